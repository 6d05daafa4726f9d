"""Persistence for credits, execution records and workflows."""

from genflow.storage.backend import InMemoryStore, Store
from genflow.storage.models import CreditTransaction, TransactionType, Workflow

__all__ = [
    "CreditTransaction",
    "InMemoryStore",
    "Store",
    "TransactionType",
    "Workflow",
]
