"""
Credit Calculator - Estimation, validation and formatting of credit amounts.

Credits are whole integers where 1,000,000 credits = 1.00 USD. Amounts
must be ``int``; floats and bools are rejected so rounding never creeps
into balances.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import TYPE_CHECKING, Any, Iterable

from genflow.core.node_types import CostConfig, NodeConfig, estimate_cost_from_config

if TYPE_CHECKING:
    from genflow.core.graph import Node
    from genflow.core.node_types import NodeRegistry


# ============================================================================
# Constants
# ============================================================================

CREDITS_PER_DOLLAR = 1_000_000

# Minimum balance required to start a run
MIN_EXECUTION_BALANCE = 1_000

# Per-type costs for node types whose configs do not declare their own
DEFAULT_NODE_COSTS: dict[str, CostConfig] = {
    # AI image generation
    "seedream-4.5": CostConfig(base_cost=50_000, per_megapixel=10_000),
    # AI video generation
    "seedance-1.5": CostConfig(base_cost=200_000, per_second=50_000),
    # Audio generation
    "elevenlabs-v3": CostConfig(base_cost=10_000, per_second=5_000),
    # LLM
    "openrouter-llm": CostConfig(base_cost=1_000, per_input_token=1, per_output_token=3),
    # Video processing
    "kling-o1": CostConfig(base_cost=300_000, per_second=100_000),
    "sync-lipsync": CostConfig(base_cost=150_000, per_second=30_000),
    # Utility nodes (compute only)
    "crop-image": CostConfig(base_cost=1_000),
    "merge-audio-video": CostConfig(base_cost=2_000),
    "merge-videos": CostConfig(base_cost=3_000),
    "extract-audio": CostConfig(base_cost=1_000),
}


def require_credits(value: Any, name: str = "amount") -> int:
    """Return ``value`` if it is an integer credit amount, else raise TypeError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer number of credits, got {type(value).__name__}")
    return value


# ============================================================================
# Types
# ============================================================================

@dataclass
class DeductionCheck:
    valid: bool
    new_balance: int
    error: str | None = None


@dataclass
class NodeCostBreakdown:
    node_id: str
    node_type: str
    node_name: str
    estimated_cost: int
    actual_cost: int | None = None


@dataclass
class WorkflowCostEstimate:
    """Estimated cost of running a set of nodes against a balance."""
    total: int
    breakdown: list[NodeCostBreakdown] = field(default_factory=list)
    can_execute: bool = True
    insufficient_by: int | None = None


@dataclass
class UsageMetrics:
    """Measured usage reported after an execution."""
    input_tokens: int | None = None
    output_tokens: int | None = None
    duration_seconds: float | None = None
    output_megapixels: float | None = None


# ============================================================================
# Validation
# ============================================================================

def has_insufficient_credits(balance: int, required: int) -> bool:
    return require_credits(balance, "balance") < require_credits(required, "required")


def validate_deduction(balance: int, amount: int) -> DeductionCheck:
    """
    Check whether ``amount`` can be deducted from ``balance``.

    A failed check leaves ``new_balance`` equal to the current balance.
    """
    require_credits(balance, "balance")
    require_credits(amount)

    if amount < 0:
        return DeductionCheck(False, balance, "Deduction amount must be positive")

    new_balance = balance - amount
    if new_balance < 0:
        return DeductionCheck(
            False,
            balance,
            f"Insufficient credits. Need {amount}, have {balance}",
        )
    return DeductionCheck(True, new_balance)


# ============================================================================
# Estimation
# ============================================================================

def cost_config_for(registry: NodeRegistry, node_type: str) -> CostConfig | None:
    """Declared cost for ``node_type``, falling back to DEFAULT_NODE_COSTS."""
    config = registry.get(node_type)
    if config is not None and not config.cost_config.is_free:
        return config.cost_config
    if node_type in DEFAULT_NODE_COSTS:
        return DEFAULT_NODE_COSTS[node_type]
    return config.cost_config if config is not None else None


def estimate_node_cost(
    registry: NodeRegistry,
    node_type: str,
    node_id: str,
    input: dict[str, Any],
) -> NodeCostBreakdown:
    """Estimate one node's cost. Types with no known cost are estimated at zero."""
    config = registry.get(node_type)
    cost = cost_config_for(registry, node_type)
    estimate = estimate_cost_from_config(cost, input) if cost is not None else 0
    return NodeCostBreakdown(
        node_id=node_id,
        node_type=node_type,
        node_name=config.name if config else node_type,
        estimated_cost=estimate,
    )


def estimate_workflow_cost(
    registry: NodeRegistry,
    nodes: Iterable[Node],
    balance: int,
) -> WorkflowCostEstimate:
    """
    Estimate the total cost of executing ``nodes``.

    Each node is estimated from its type's defaults overlaid with its own
    data, the same input the orchestrator starts from.
    """
    require_credits(balance, "balance")

    breakdown = []
    total = 0
    for node in nodes:
        input = {**(registry.get_default_values(node.type) or {}), **node.data}
        item = estimate_node_cost(registry, node.type, node.id, input)
        breakdown.append(item)
        total += item.estimated_cost

    can_execute = balance >= total
    return WorkflowCostEstimate(
        total=total,
        breakdown=breakdown,
        can_execute=can_execute,
        insufficient_by=None if can_execute else total - balance,
    )


def _term(rate: int, quantity: float | int | None) -> int:
    if not rate or not quantity:
        return 0
    if isinstance(quantity, float):
        quantity = Fraction(str(quantity))
    return math.ceil(rate * quantity)


def calculate_actual_cost(config: NodeConfig | CostConfig | None, metrics: UsageMetrics) -> int:
    """
    Cost of a finished execution from measured usage.

    Each variable contribution is rounded up separately, then added to the
    base cost. A missing config costs nothing.
    """
    if config is None:
        return 0
    cost = config.cost_config if isinstance(config, NodeConfig) else config

    return (
        cost.base_cost
        + _term(cost.per_input_token, metrics.input_tokens)
        + _term(cost.per_output_token, metrics.output_tokens)
        + _term(cost.per_second, metrics.duration_seconds)
        + _term(cost.per_megapixel, metrics.output_megapixels)
    )


# ============================================================================
# Formatting and conversion
# ============================================================================

def format_credits(credits: int) -> str:
    """Format credits for display, e.g. "1.50M" or "500.0K"."""
    require_credits(credits, "credits")
    if credits >= 1_000_000:
        return f"{credits / 1_000_000:.2f}M"
    if credits >= 1_000:
        return f"{credits / 1_000:.1f}K"
    return str(credits)


def credits_to_usd(credits: int) -> Decimal:
    require_credits(credits, "credits")
    return Decimal(credits) / CREDITS_PER_DOLLAR


def usd_to_credits(dollars: Decimal | int | float | str) -> int:
    """Convert a dollar amount to credits, rounding half up."""
    amount = Decimal(str(dollars)) * CREDITS_PER_DOLLAR
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_credits_as_usd(credits: int) -> str:
    """Format credits as dollars with two to four decimal places, e.g. "$1.50"."""
    dollars = credits_to_usd(credits).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
    text = f"{abs(dollars):,.4f}"
    whole, frac = text.split(".")
    frac = frac.rstrip("0").ljust(2, "0")
    sign = "-" if dollars < 0 else ""
    return f"{sign}${whole}.{frac}"
