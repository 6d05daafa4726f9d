"""
Tests for credit estimation, formatting and the ledger.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from genflow.core.graph import Node
from genflow.core.node_types import CostConfig, NodeCategory, NodeConfig, NodeRegistry
from genflow.credits import (
    CreditTransactionInput,
    UsageMetrics,
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
from genflow.storage.models import TransactionType, utc_now


class TestValidation:

    def test_insufficient(self):
        assert has_insufficient_credits(10, 11)
        assert not has_insufficient_credits(10, 10)

    def test_valid_deduction(self):
        check = validate_deduction(100, 40)
        assert check.valid
        assert check.new_balance == 60
        assert check.error is None

    def test_overdraw_keeps_balance(self):
        check = validate_deduction(100, 150)
        assert not check.valid
        assert check.new_balance == 100
        assert check.error == "Insufficient credits. Need 150, have 100"

    def test_negative_amount(self):
        check = validate_deduction(100, -5)
        assert not check.valid
        assert check.error == "Deduction amount must be positive"

    @pytest.mark.parametrize("amount", [1.5, True, "10"])
    def test_non_integer_amounts_rejected(self, amount):
        with pytest.raises(TypeError):
            validate_deduction(100, amount)


class TestEstimation:

    def test_node_cost(self, node_registry):
        item = estimate_node_cost(node_registry, "llm", "n1", {"user_message": "x" * 12})
        assert item.estimated_cost == 1_003
        assert item.node_name == "Run LLM"

    def test_free_config_falls_back_to_default_table(self):
        registry = NodeRegistry([
            NodeConfig(type="seedream-4.5", name="Seedream", category=NodeCategory.AI_IMAGE),
        ])
        item = estimate_node_cost(registry, "seedream-4.5", "n1", {"width": 1000, "height": 1000})
        assert item.estimated_cost == 60_000

    def test_unknown_type_costs_nothing(self):
        item = estimate_node_cost(NodeRegistry(), "mystery", "n1", {})
        assert item.estimated_cost == 0
        assert item.node_name == "mystery"

    def test_workflow_estimate_uses_defaults_and_data(self, node_registry):
        nodes = [
            Node.create("text", {"value": "hi"}, node_id="t"),
            Node.create("llm", {"user_message": "abcd"}, node_id="l"),
            Node.create("crop-image", node_id="c"),
        ]
        estimate = estimate_workflow_cost(node_registry, nodes, balance=2_000)
        assert [b.estimated_cost for b in estimate.breakdown] == [0, 1_001, 1_000]
        assert estimate.total == 2_001
        assert not estimate.can_execute
        assert estimate.insufficient_by == 1

    def test_workflow_estimate_affordable(self, node_registry):
        estimate = estimate_workflow_cost(node_registry, [Node.create("crop-image")], balance=5_000)
        assert estimate.can_execute
        assert estimate.insufficient_by is None


class TestActualCost:

    def test_token_usage(self):
        cost = CostConfig(base_cost=1_000, per_input_token=1, per_output_token=3)
        assert calculate_actual_cost(cost, UsageMetrics(input_tokens=100, output_tokens=50)) == 1_250

    def test_fractional_terms_round_up_separately(self):
        cost = CostConfig(base_cost=10, per_second=3, per_megapixel=5)
        metrics = UsageMetrics(duration_seconds=0.5, output_megapixels=0.1)
        # ceil(1.5) + ceil(0.5)
        assert calculate_actual_cost(cost, metrics) == 10 + 2 + 1

    def test_node_config_and_missing_config(self, node_registry):
        assert calculate_actual_cost(node_registry.get("crop-image"), UsageMetrics()) == 1_000
        assert calculate_actual_cost(None, UsageMetrics(input_tokens=5)) == 0


class TestFormatting:

    @pytest.mark.parametrize("credits, text", [
        (1_500_000, "1.50M"),
        (500_000, "500.0K"),
        (1_000, "1.0K"),
        (999, "999"),
        (0, "0"),
    ])
    def test_format_credits(self, credits, text):
        assert format_credits(credits) == text

    def test_usd_conversion(self):
        assert credits_to_usd(1_500_000) == Decimal("1.5")
        assert usd_to_credits("0.0000015") == 2
        assert usd_to_credits(2) == 2_000_000

    @pytest.mark.parametrize("credits, text", [
        (1_500_000, "$1.50"),
        (1_234, "$0.0012"),
        (100, "$0.0001"),
        (2_000_000_000, "$2,000.00"),
    ])
    def test_format_as_usd(self, credits, text):
        assert format_credits_as_usd(credits) == text


class TestLedger:

    @pytest.mark.asyncio
    async def test_open_account_records_bonus(self, ledger):
        await ledger.open_account("u1", 5_000)
        assert await ledger.get_balance("u1") == 5_000

        history = await ledger.get_transaction_history("u1")
        assert len(history) == 1
        assert history[0].type is TransactionType.BONUS
        assert history[0].balance == 5_000

    @pytest.mark.asyncio
    async def test_open_account_validation(self, ledger):
        with pytest.raises(ValueError):
            await ledger.open_account("u1", -1)
        with pytest.raises(TypeError):
            await ledger.open_account("u1", 1.0)
        await ledger.open_account("u1")
        with pytest.raises(ValueError):
            await ledger.open_account("u1")

    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger):
        assert await ledger.get_balance("ghost") == 0
        result = await ledger.reserve_credits("ghost", 10, "exec_1")
        assert not result.success
        assert result.error_code == "USER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_deduct(self, ledger):
        await ledger.open_account("u1", 1_000)
        result = await ledger.deduct_credits(CreditTransactionInput(
            user_id="u1", amount=-300, type=TransactionType.EXECUTION, description="run",
        ))
        assert result.success
        assert result.new_balance == 700
        assert result.transaction_id.startswith("tx_")

    @pytest.mark.asyncio
    async def test_overdraw_fails_without_side_effects(self, ledger, store):
        await ledger.open_account("u1", 100)
        result = await ledger.reserve_credits("u1", 250, "exec_1")

        assert not result.success
        assert result.error_code == "INSUFFICIENT_CREDITS"
        assert result.error == "Insufficient credits. Required: 250, Available: 100"
        assert result.shortfall == 150
        assert await ledger.get_balance("u1") == 100
        assert len(await store.list_transactions(user_id="u1")) == 1

    @pytest.mark.asyncio
    async def test_reserve_and_refund(self, ledger):
        await ledger.open_account("u1", 1_000)
        await ledger.reserve_credits("u1", 400, "exec_1", node_id="n1", provider="gemini")
        refund = await ledger.refund_credits("u1", 150, "exec_1", reason="cheaper", node_id="n1")

        assert refund.new_balance == 750
        entries = await ledger.get_execution_transactions("exec_1")
        assert [(e.type, e.amount) for e in entries] == [
            (TransactionType.EXECUTION, -400),
            (TransactionType.REFUND, 150),
        ]
        assert entries[0].description == "Reserved for execution exec_1"
        assert entries[0].provider == "gemini"
        assert entries[1].description == "Refund: cheaper"

    @pytest.mark.asyncio
    async def test_concurrent_deductions_never_overdraw(self, ledger):
        await ledger.open_account("u1", 1_000)

        results = await asyncio.gather(*(
            ledger.reserve_credits("u1", 300, f"exec_{i}") for i in range(10)
        ))

        assert sum(r.success for r in results) == 3
        assert await ledger.get_balance("u1") == 100
        audit = await ledger.verify_balance("u1")
        assert audit.consistent
        assert audit.history_total == 100

    @pytest.mark.asyncio
    async def test_history_filters_and_paging(self, ledger):
        await ledger.open_account("u1", 1_000)
        for i in range(3):
            await ledger.reserve_credits("u1", 10, f"exec_{i}")
        await ledger.refund_credits("u1", 10, "exec_0", reason="failed")

        history = await ledger.get_transaction_history("u1")
        assert history[0].type is TransactionType.REFUND

        executions = await ledger.get_transaction_history("u1", type="execution")
        assert [e.execution_id for e in executions] == ["exec_2", "exec_1", "exec_0"]

        page = await ledger.get_transaction_history("u1", limit=2, offset=1)
        assert [e.execution_id for e in page] == ["exec_2", "exec_1"]

    @pytest.mark.asyncio
    async def test_credits_used_in_period(self, ledger):
        start = utc_now() - timedelta(seconds=1)
        await ledger.open_account("u1", 1_000)
        await ledger.reserve_credits("u1", 100, "exec_1")
        await ledger.reserve_credits("u1", 50, "exec_2")
        await ledger.refund_credits("u1", 50, "exec_2", reason="failed")
        end = utc_now() + timedelta(seconds=1)

        assert await ledger.get_credits_used_in_period("u1", start, end) == 150

    @pytest.mark.asyncio
    async def test_verify_balance_detects_drift(self, ledger, store):
        await ledger.open_account("u1", 1_000)
        await store.set_credits("u1", 999)

        audit = await ledger.verify_balance("u1")
        assert not audit.consistent
        assert audit.balance == 999
        assert audit.history_total == 1_000
