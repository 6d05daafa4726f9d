"""
Credits - Cost estimation and the credit ledger.

1,000,000 credits = 1.00 USD. All amounts are integers.
"""

from genflow.credits.calculator import (
    CREDITS_PER_DOLLAR,
    DEFAULT_NODE_COSTS,
    MIN_EXECUTION_BALANCE,
    DeductionCheck,
    NodeCostBreakdown,
    UsageMetrics,
    WorkflowCostEstimate,
    calculate_actual_cost,
    credits_to_usd,
    estimate_node_cost,
    estimate_workflow_cost,
    format_credits,
    format_credits_as_usd,
    has_insufficient_credits,
    usd_to_credits,
    validate_deduction,
)
from genflow.credits.ledger import (
    BalanceAudit,
    CreditLedger,
    CreditTransactionInput,
    LedgerResult,
)

__all__ = [
    "BalanceAudit",
    "CREDITS_PER_DOLLAR",
    "CreditLedger",
    "CreditTransactionInput",
    "DEFAULT_NODE_COSTS",
    "DeductionCheck",
    "LedgerResult",
    "MIN_EXECUTION_BALANCE",
    "NodeCostBreakdown",
    "UsageMetrics",
    "WorkflowCostEstimate",
    "calculate_actual_cost",
    "credits_to_usd",
    "estimate_node_cost",
    "estimate_workflow_cost",
    "format_credits",
    "format_credits_as_usd",
    "has_insufficient_credits",
    "usd_to_credits",
    "validate_deduction",
]
