"""
Credit Ledger - Atomic balance updates with an append-only history.

All credit mutations go through CreditLedger. Each mutation takes the
user's lock, reads the balance, checks it, writes the new balance and
appends a ledger entry, so concurrent deductions can never overdraw.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from genflow.credits.calculator import require_credits
from genflow.storage.backend import Store
from genflow.storage.models import CreditTransaction, TransactionType, new_record_id


logger = logging.getLogger(__name__)


INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
USER_NOT_FOUND = "USER_NOT_FOUND"


@dataclass
class CreditTransactionInput:
    """A requested balance change. The sign of ``amount`` is ignored."""
    user_id: str
    amount: int
    type: TransactionType
    description: str
    execution_id: str | None = None
    node_id: str | None = None
    provider: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class LedgerResult:
    """
    Outcome of a ledger mutation.

    A failed result mutated nothing. ``shortfall`` is set when the failure
    was an insufficient balance.
    """
    success: bool
    transaction_id: str | None = None
    new_balance: int | None = None
    error: str | None = None
    error_code: str | None = None
    shortfall: int | None = None


@dataclass
class BalanceAudit:
    """Result of checking stored history against the stored balance."""
    user_id: str
    balance: int
    history_total: int
    consistent: bool
    mismatched_entries: list[str] = field(default_factory=list)


class CreditLedger:
    """
    Credit accounts backed by a Store.

    One ledger should own a store's credit data; the per-user locks only
    serialize mutations made through the same ledger instance.
    """

    def __init__(self, store: Store):
        self.store = store
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def open_account(self, user_id: str, initial: int = 0) -> int:
        """
        Create a user account.

        A positive starting balance is recorded as a bonus entry so the
        history always sums to the balance.
        """
        require_credits(initial, "initial")
        if initial < 0:
            raise ValueError("Initial balance cannot be negative")

        async with self._locks[user_id]:
            await self.store.create_user(user_id, 0)
            if initial:
                await self._write(
                    CreditTransactionInput(
                        user_id=user_id,
                        amount=initial,
                        type=TransactionType.BONUS,
                        description="Opening balance",
                    ),
                    current=0,
                    delta=initial,
                )
        logger.debug(f"Opened account {user_id} with {initial} credits")
        return initial

    async def get_balance(self, user_id: str) -> int:
        """Current balance, or 0 for an unknown user."""
        return await self.store.get_credits(user_id) or 0

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def deduct_credits(self, input: CreditTransactionInput) -> LedgerResult:
        """Deduct ``abs(input.amount)``. Fails without side effects on overdraw."""
        amount = abs(require_credits(input.amount))

        async with self._locks[input.user_id]:
            current = await self.store.get_credits(input.user_id)
            if current is None:
                return LedgerResult(success=False, error="User not found", error_code=USER_NOT_FOUND)

            if current < amount:
                return LedgerResult(
                    success=False,
                    error=f"Insufficient credits. Required: {amount}, Available: {current}",
                    error_code=INSUFFICIENT_CREDITS,
                    shortfall=amount - current,
                )

            tx = await self._write(input, current=current, delta=-amount)

        logger.debug(f"Deducted {amount} from {input.user_id}: {input.description}")
        return LedgerResult(success=True, transaction_id=tx.id, new_balance=tx.balance)

    async def add_credits(self, input: CreditTransactionInput) -> LedgerResult:
        """Add ``abs(input.amount)``. Only fails for an unknown user."""
        amount = abs(require_credits(input.amount))

        async with self._locks[input.user_id]:
            current = await self.store.get_credits(input.user_id)
            if current is None:
                return LedgerResult(success=False, error="User not found", error_code=USER_NOT_FOUND)

            tx = await self._write(input, current=current, delta=amount)

        logger.debug(f"Added {amount} to {input.user_id}: {input.description}")
        return LedgerResult(success=True, transaction_id=tx.id, new_balance=tx.balance)

    async def reserve_credits(
        self,
        user_id: str,
        amount: int,
        execution_id: str,
        node_id: str | None = None,
        provider: str | None = None,
    ) -> LedgerResult:
        """Hold credits for an execution before it runs."""
        return await self.deduct_credits(CreditTransactionInput(
            user_id=user_id,
            amount=amount,
            type=TransactionType.EXECUTION,
            description=f"Reserved for execution {execution_id}",
            execution_id=execution_id,
            node_id=node_id,
            provider=provider,
        ))

    async def refund_credits(
        self,
        user_id: str,
        amount: int,
        execution_id: str,
        reason: str,
        node_id: str | None = None,
    ) -> LedgerResult:
        """Return credits for a failed execution or an over-estimate."""
        return await self.add_credits(CreditTransactionInput(
            user_id=user_id,
            amount=amount,
            type=TransactionType.REFUND,
            description=f"Refund: {reason}",
            execution_id=execution_id,
            node_id=node_id,
        ))

    async def _write(self, input: CreditTransactionInput, current: int, delta: int) -> CreditTransaction:
        # Caller holds the user's lock
        new_balance = current + delta
        tx = CreditTransaction(
            id=new_record_id("tx"),
            user_id=input.user_id,
            amount=delta,
            balance=new_balance,
            type=input.type,
            description=input.description,
            execution_id=input.execution_id,
            node_id=input.node_id,
            provider=input.provider,
            metadata=dict(input.metadata),
        )
        await self.store.set_credits(input.user_id, new_balance)
        await self.store.append_transaction(tx)
        return tx

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def get_transaction_history(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        type: TransactionType | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CreditTransaction]:
        """A user's entries, newest first, with optional filters and paging."""
        if isinstance(type, str):
            type = TransactionType(type)

        entries = [
            tx for tx in await self.store.list_transactions(user_id=user_id)
            if (type is None or tx.type is type)
            and (start is None or tx.created_at >= start)
            and (end is None or tx.created_at <= end)
        ]
        entries.reverse()
        return entries[offset:offset + limit]

    async def get_execution_transactions(self, execution_id: str) -> list[CreditTransaction]:
        """Entries for one execution, oldest first."""
        return await self.store.list_transactions(execution_id=execution_id)

    async def get_credits_used_in_period(self, user_id: str, start: datetime, end: datetime) -> int:
        """Credits spent on executions in ``[start, end]``, as a positive number."""
        total = sum(
            tx.amount
            for tx in await self.store.list_transactions(user_id=user_id)
            if tx.type is TransactionType.EXECUTION and start <= tx.created_at <= end
        )
        return -total

    async def verify_balance(self, user_id: str) -> BalanceAudit:
        """Check that the history sums to the stored balance, entry by entry."""
        balance = await self.get_balance(user_id)
        running = 0
        mismatched = []
        for tx in await self.store.list_transactions(user_id=user_id):
            running += tx.amount
            if tx.balance != running:
                mismatched.append(tx.id)

        consistent = running == balance and not mismatched
        if not consistent:
            logger.warning(f"Ledger mismatch for {user_id}: balance={balance}, history={running}")
        return BalanceAudit(user_id, balance, running, consistent, mismatched)
