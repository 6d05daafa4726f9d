"""
Storage models - Records persisted by a Store.

Execution records (WorkflowExecution) live in genflow.core.execution;
this module holds the ledger entry and the saved workflow.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class TransactionType(Enum):
    """Kind of ledger entry."""
    EXECUTION = "execution"
    TOPUP = "topup"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    BONUS = "bonus"


@dataclass(frozen=True)
class CreditTransaction:
    """
    One immutable ledger entry.

    Attributes:
        amount: Signed change in credits (negative for deductions)
        balance: User balance immediately after this entry
    """
    id: str
    user_id: str
    amount: int
    balance: int
    type: TransactionType
    description: str
    execution_id: str | None = None
    node_id: str | None = None
    provider: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "amount": self.amount,
            "balance": self.balance,
            "type": self.type.value,
            "description": self.description,
            "executionId": self.execution_id,
            "nodeId": self.node_id,
            "provider": self.provider,
            "metadata": dict(self.metadata),
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class Workflow:
    """A saved workflow document owned by a user."""
    id: str
    user_id: str
    name: str
    data: dict[str, Any]
    description: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
