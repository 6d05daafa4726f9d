"""
Store - Persistence interface for credits, executions and workflows.

The ledger and orchestrator only talk to the abstract Store. InMemoryStore
is the reference implementation used by the CLI and the tests.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import TYPE_CHECKING

from genflow.storage.models import CreditTransaction, Workflow, utc_now

if TYPE_CHECKING:
    from genflow.core.execution import WorkflowExecution


logger = logging.getLogger(__name__)


class Store(ABC):
    """Async persistence operations used by the engine."""

    # --- Users and balances ---

    @abstractmethod
    async def create_user(self, user_id: str, credits: int = 0) -> None:
        """Create a user with a starting balance. Raises ValueError if it exists."""

    @abstractmethod
    async def get_credits(self, user_id: str) -> int | None:
        """Current balance, or None for an unknown user."""

    @abstractmethod
    async def set_credits(self, user_id: str, credits: int) -> None:
        """Overwrite a known user's balance. Raises KeyError for an unknown user."""

    # --- Ledger ---

    @abstractmethod
    async def append_transaction(self, transaction: CreditTransaction) -> None:
        """Append an entry. Entries are never updated or deleted."""

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str | None = None,
        execution_id: str | None = None,
    ) -> list[CreditTransaction]:
        """Matching entries in the order they were appended."""

    # --- Executions ---

    @abstractmethod
    async def create_execution(self, execution: WorkflowExecution) -> None: ...

    @abstractmethod
    async def update_execution(self, execution: WorkflowExecution) -> None: ...

    @abstractmethod
    async def get_execution(self, execution_id: str) -> WorkflowExecution | None: ...

    @abstractmethod
    async def list_executions(
        self,
        run_id: str | None = None,
        workflow_id: str | None = None,
        user_id: str | None = None,
    ) -> list[WorkflowExecution]:
        """Matching execution records in creation order."""

    # --- Workflows ---

    @abstractmethod
    async def save_workflow(self, workflow: Workflow) -> None: ...

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Workflow | None: ...

    @abstractmethod
    async def list_workflows(self, user_id: str) -> list[Workflow]: ...


class InMemoryStore(Store):
    """
    Dict-backed Store.

    Execution records are copied on the way in and out, so callers polling
    ``list_executions`` see snapshots rather than live objects.
    """

    def __init__(self):
        self._credits: dict[str, int] = {}
        self._transactions: list[CreditTransaction] = []
        self._executions: dict[str, WorkflowExecution] = {}
        self._workflows: dict[str, Workflow] = {}

    async def create_user(self, user_id: str, credits: int = 0) -> None:
        if user_id in self._credits:
            raise ValueError(f'User "{user_id}" already exists')
        self._credits[user_id] = credits

    async def get_credits(self, user_id: str) -> int | None:
        return self._credits.get(user_id)

    async def set_credits(self, user_id: str, credits: int) -> None:
        if user_id not in self._credits:
            raise KeyError(user_id)
        self._credits[user_id] = credits

    async def append_transaction(self, transaction: CreditTransaction) -> None:
        self._transactions.append(transaction)

    async def list_transactions(
        self,
        user_id: str | None = None,
        execution_id: str | None = None,
    ) -> list[CreditTransaction]:
        return [
            tx for tx in self._transactions
            if (user_id is None or tx.user_id == user_id)
            and (execution_id is None or tx.execution_id == execution_id)
        ]

    async def create_execution(self, execution: WorkflowExecution) -> None:
        if execution.id in self._executions:
            raise ValueError(f'Execution "{execution.id}" already exists')
        self._executions[execution.id] = copy.deepcopy(execution)

    async def update_execution(self, execution: WorkflowExecution) -> None:
        if execution.id not in self._executions:
            raise KeyError(execution.id)
        self._executions[execution.id] = copy.deepcopy(execution)

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        execution = self._executions.get(execution_id)
        return copy.deepcopy(execution) if execution is not None else None

    async def list_executions(
        self,
        run_id: str | None = None,
        workflow_id: str | None = None,
        user_id: str | None = None,
    ) -> list[WorkflowExecution]:
        return [
            copy.deepcopy(e) for e in self._executions.values()
            if (run_id is None or e.run_id == run_id)
            and (workflow_id is None or e.workflow_id == workflow_id)
            and (user_id is None or e.user_id == user_id)
        ]

    async def save_workflow(self, workflow: Workflow) -> None:
        existing = self._workflows.get(workflow.id)
        if existing is not None:
            workflow = replace(workflow, created_at=existing.created_at, updated_at=utc_now())
        self._workflows[workflow.id] = workflow
        logger.debug(f"Saved workflow {workflow.id}")

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        return self._workflows.get(workflow_id)

    async def list_workflows(self, user_id: str) -> list[Workflow]:
        return [w for w in self._workflows.values() if w.user_id == user_id]
