"""
Execution Engine - Credit-aware workflow execution.

This module runs a workflow graph node by node in dependency order:
validating each node's input, reserving its estimated cost, dispatching it
to a provider (or evaluating it locally), settling credits and propagating
outputs downstream. Runs can be cancelled and report progress through an
ExecutionEventBus.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from genflow.core.data_types import is_valid_connection
from genflow.core.errors import (
    ConfigError,
    IncompatibleConnectionError,
    InsufficientCreditsError,
    ValidationError,
)
from genflow.core.events import ExecutionEventBus, ExecutionEventType
from genflow.core.graph import Node, WorkflowGraph
from genflow.core.node_types import HandleDefinition, NodeConfig, NodeRegistry
from genflow.credits.calculator import estimate_node_cost
from genflow.credits.ledger import CreditLedger
from genflow.providers.base import ProviderError, ProviderErrorCode, ProviderExecuteOptions
from genflow.providers.registry import ProviderRegistry
from genflow.storage.backend import Store
from genflow.storage.models import new_record_id, utc_now


logger = logging.getLogger(__name__)


# Keys the engine writes into node data that are not node input
RUNTIME_KEYS = frozenset({"is_executing", "error"})

INVALID_INPUT = ProviderErrorCode.INVALID_INPUT.value
INSUFFICIENT_CREDITS = InsufficientCreditsError.code
CANCELLED = "CANCELLED"


# ============================================================================
# Records and results
# ============================================================================

class ExecutionStatus(Enum):
    """Status of a single node execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


@dataclass
class WorkflowExecution:
    """
    Persisted record of one node execution.

    A record reaches a terminal state exactly once.
    """
    id: str
    workflow_id: str
    user_id: str
    node_id: str
    node_type: str
    run_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    input: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None
    credits_reserved: int = 0
    credits_charged: int = 0
    provider: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    def mark_running(self) -> None:
        if self.status is not ExecutionStatus.PENDING:
            raise ValueError(f"Execution {self.id} cannot start from {self.status.value}")
        self.status = ExecutionStatus.RUNNING

    def mark_completed(
        self,
        output: dict[str, Any],
        credits_charged: int = 0,
        provider: str | None = None,
    ) -> None:
        self._finish(ExecutionStatus.COMPLETED)
        self.output = output
        self.credits_charged = credits_charged
        if provider is not None:
            self.provider = provider

    def mark_failed(self, error: str, error_code: str) -> None:
        self._finish(ExecutionStatus.FAILED)
        self.error = error
        self.error_code = error_code
        self.credits_charged = 0

    def _finish(self, status: ExecutionStatus) -> None:
        if self.status.is_terminal:
            raise ValueError(f"Execution {self.id} is already {self.status.value}")
        self.status = status
        self.completed_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "userId": self.user_id,
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "runId": self.run_id,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "errorCode": self.error_code,
            "creditsReserved": self.credits_reserved,
            "creditsCharged": self.credits_charged,
            "provider": self.provider,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


class RunStatus(Enum):
    """Status of a whole run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """Outcome of ExecutionOrchestrator.run()."""
    run_id: str
    status: RunStatus
    executions: list[WorkflowExecution] = field(default_factory=list)
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    failed_node_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    credits_charged: int = 0

    @property
    def success(self) -> bool:
        return self.status is RunStatus.COMPLETED


class SettlementPolicy(Enum):
    """How a reservation is reconciled with the provider-reported cost."""
    ESTIMATE_IS_FINAL = "estimate_is_final"
    REFUND_OVERAGE = "refund_overage"


# ============================================================================
# Input gathering
# ============================================================================

def resolve_handle(handles: list[HandleDefinition], handle_id: str | None) -> HandleDefinition | None:
    """
    Find a handle by id.

    An empty id resolves to the only handle when there is exactly one.
    """
    if not handle_id:
        return handles[0] if len(handles) == 1 else None
    for handle in handles:
        if handle.id == handle_id:
            return handle
    return None


def _upstream_value(
    graph: WorkflowGraph,
    edge_source: str,
    source_handle: str,
    outputs: Mapping[str, Mapping[str, Any]],
    registry: NodeRegistry,
) -> Any:
    """Recorded output behind an edge's source handle, or None if not available."""
    produced = outputs.get(edge_source)
    if produced is None:
        return None
    source_node = graph.get_node(edge_source)
    config = registry.get(source_node.type) if source_node else None
    if config is None:
        return None
    handle = resolve_handle(config.outputs, source_handle)
    if handle is None:
        return None
    return produced.get(handle.key)


def _fan_in(handle: HandleDefinition, values: list[Any]) -> tuple[bool, Any]:
    """
    Combine the values arriving on one handle.

    Returns (has_value, value).
    """
    if handle.multiple:
        merged: list[Any] = []
        for value in values:
            if isinstance(value, list):
                merged.extend(value)
            else:
                merged.append(value)
        return bool(values), merged

    for value in values:
        if isinstance(value, list):
            if value:
                return True, value[0]
            continue
        return True, value
    return False, None


def _gather(
    graph: WorkflowGraph,
    node_id: str,
    outputs: Mapping[str, Mapping[str, Any]],
    registry: NodeRegistry,
    only_from: str | None = None,
) -> dict[str, Any]:
    node = graph.get_node(node_id)
    config = registry.get(node.type) if node else None
    if config is None:
        return {}

    arriving: dict[str, tuple[HandleDefinition, list[Any]]] = {}
    touched: set[str] = set()
    for edge in graph.incoming_edges(node_id):
        handle = resolve_handle(config.inputs, edge.target_handle)
        if handle is None:
            continue
        if only_from is not None and edge.source == only_from:
            touched.add(handle.key)
        value = _upstream_value(graph, edge.source, edge.source_handle, outputs, registry)
        entry = arriving.setdefault(handle.key, (handle, []))
        if value is not None:
            entry[1].append(value)

    gathered: dict[str, Any] = {}
    for key, (handle, values) in arriving.items():
        if only_from is not None and key not in touched:
            continue
        has_value, value = _fan_in(handle, values)
        if has_value:
            gathered[key] = value
    return gathered


def gather_inputs(
    graph: WorkflowGraph,
    node_id: str,
    outputs: Mapping[str, Mapping[str, Any]],
    registry: NodeRegistry,
) -> dict[str, Any]:
    """
    Collect the values connected to a node's input handles.

    Upstream outputs are read through each edge's source handle and written
    under the target handle's key. A single-valued handle takes the first
    connected edge (in edge order) whose upstream output is available; a
    ``multiple`` handle concatenates every available value in edge order,
    flattening lists one level.

    Args:
        graph: The workflow graph
        node_id: Node whose inputs are gathered
        outputs: Recorded outputs, node id -> output key -> value
        registry: Node registry for handle definitions

    Returns:
        Input key -> value for every handle that received something
    """
    return _gather(graph, node_id, outputs, registry)


def propagate(
    graph: WorkflowGraph,
    node_id: str,
    outputs: Mapping[str, Mapping[str, Any]],
    registry: NodeRegistry,
) -> dict[str, dict[str, Any]]:
    """
    Input updates each direct downstream node receives from ``node_id``.

    Only keys fed by an edge from ``node_id`` are included; their values
    follow the same fan-in rule as gather_inputs. Nothing is mutated.
    """
    updates: dict[str, dict[str, Any]] = {}
    for edge in graph.outgoing_edges(node_id):
        if edge.target in updates:
            continue
        values = _gather(graph, edge.target, outputs, registry, only_from=node_id)
        if values:
            updates[edge.target] = values
    return updates


# ============================================================================
# Orchestrator
# ============================================================================

class ExecutionOrchestrator:
    """
    Runs workflow graphs against providers, the credit ledger and a store.

    Execution within a run is sequential. Separate runs may proceed
    concurrently; they share nothing but the ledger's per-user locks.
    """

    def __init__(
        self,
        node_registry: NodeRegistry,
        provider_registry: ProviderRegistry,
        ledger: CreditLedger,
        store: Store,
        events: ExecutionEventBus | None = None,
        settlement: SettlementPolicy = SettlementPolicy.REFUND_OVERAGE,
    ):
        self.node_registry = node_registry
        self.provider_registry = provider_registry
        self.ledger = ledger
        self.store = store
        self.events = events or ExecutionEventBus()
        self.settlement = settlement
        self._abort_events: dict[str, asyncio.Event] = {}

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self, graph: WorkflowGraph) -> None:
        """
        Check a graph can run, without side effects.

        Raises:
            ConfigError: A node's type is not registered
            ValidationError: A dangling edge or unknown handle
            IncompatibleConnectionError: An edge joins mismatched data types
            CycleError: The graph has a cycle
        """
        for node in graph.nodes:
            if not self.node_registry.has(node.type):
                raise ConfigError(f'Unknown node type "{node.type}" (node {node.id})')

        for edge in graph.edges:
            source = graph.get_node(edge.source)
            target = graph.get_node(edge.target)
            if source is None or target is None:
                missing = edge.source if source is None else edge.target
                raise ValidationError(f'Edge {edge.id} references missing node "{missing}"')

            source_handle = resolve_handle(
                self.node_registry.get(source.type).outputs, edge.source_handle
            )
            if source_handle is None:
                raise ValidationError(
                    f'Edge {edge.id}: node {source.id} has no output handle "{edge.source_handle}"'
                )
            target_handle = resolve_handle(
                self.node_registry.get(target.type).inputs, edge.target_handle
            )
            if target_handle is None:
                raise ValidationError(
                    f'Edge {edge.id}: node {target.id} has no input handle "{edge.target_handle}"'
                )

            if not is_valid_connection(source_handle.data_type, target_handle.data_type):
                raise IncompatibleConnectionError(
                    f"Edge {edge.id}: cannot connect {source_handle.data_type.value} "
                    f"to {target_handle.data_type.value}"
                )

        # Raises CycleError
        graph.execution_order()

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    async def run(
        self,
        graph: WorkflowGraph,
        user_id: str,
        workflow_id: str = "draft",
        node_ids: Iterable[str] | None = None,
        run_id: str | None = None,
        options: ProviderExecuteOptions | None = None,
    ) -> RunResult:
        """
        Execute a workflow graph.

        Args:
            graph: Graph to run; node data is updated in place with outputs
            user_id: Account charged for the run
            workflow_id: Workflow the execution records belong to
            node_ids: Run only these nodes and everything upstream of them
            run_id: Identifier for this run (generated if omitted)
            options: Provider call options applied to every node

        Returns:
            RunResult describing every execution record created

        Raises:
            ConfigError, ValidationError: The graph cannot run; nothing was
                written and no credits were touched
        """
        self.validate(graph)
        order = graph.execution_order(node_ids)

        run_id = run_id or new_record_id("run")
        abort = asyncio.Event()
        self._abort_events[run_id] = abort
        run = _RunState(run_id=run_id, workflow_id=workflow_id, user_id=user_id, abort=abort)
        call_options = replace(options or ProviderExecuteOptions(), signal=abort)

        logger.info(f"Run {run_id} started: {len(order)} nodes for user {user_id}")
        await self.events.emit(
            ExecutionEventType.RUN_STARTED, run_id, workflow_id,
            node_ids=[node.id for node in order],
        )

        try:
            sources = [node for node in order if self._is_source(graph, node)]
            for node in sources:
                await self._complete_source(graph, node, run)

            for node in order:
                if node.id in run.outputs:
                    continue
                if abort.is_set():
                    break
                ok = await self._execute_node(graph, node, run, call_options)
                if not ok:
                    break
        finally:
            self._abort_events.pop(run_id, None)

        return await self._finish(run)

    def cancel(self, run_id: str) -> bool:
        """
        Ask a run to stop.

        The node in flight receives the abort signal; no further nodes are
        scheduled. Returns False if the run is not active.
        """
        abort = self._abort_events.get(run_id)
        if abort is None:
            return False
        logger.info(f"Cancelling run {run_id}")
        abort.set()
        return True

    @property
    def active_runs(self) -> list[str]:
        return list(self._abort_events)

    # -------------------------------------------------------------------------
    # Per-node steps
    # -------------------------------------------------------------------------

    def _is_source(self, graph: WorkflowGraph, node: Node) -> bool:
        config = self.node_registry.get(node.type)
        return config.is_local and not graph.incoming_edges(node.id)

    def _base_input(self, node: Node) -> dict[str, Any]:
        defaults = self.node_registry.get_default_values(node.type) or {}
        data = {k: v for k, v in node.data.items() if k not in RUNTIME_KEYS}
        return {**defaults, **data}

    async def _complete_source(self, graph: WorkflowGraph, node: Node, run: _RunState) -> None:
        """Record a source node's literal value as its output at zero cost."""
        config = self.node_registry.get(node.type)
        input = self._base_input(node)
        output = _local_outputs(config, input)

        execution = run.new_execution(node, input)
        execution.mark_completed(output)
        await self.store.create_execution(execution)

        self._apply_outputs(graph, node, output, run)
        await self.events.emit(
            ExecutionEventType.NODE_COMPLETED, run.run_id, run.workflow_id,
            node_id=node.id, execution_id=execution.id,
            output=output, credits_charged=0,
        )

    async def _execute_node(
        self,
        graph: WorkflowGraph,
        node: Node,
        run: _RunState,
        options: ProviderExecuteOptions,
    ) -> bool:
        """Run one node through validate, reserve, execute and settle. Returns success."""
        config = self.node_registry.get(node.type)

        # a. Gather: defaults, then node data, then connected values
        input = {
            **self._base_input(node),
            **gather_inputs(graph, node.id, run.outputs, self.node_registry),
        }
        execution = run.new_execution(node, input)

        # b. Validate
        validation = self.node_registry.validate_input(node.type, input)
        if not validation.success:
            execution.mark_failed(validation.error or "Invalid input", INVALID_INPUT)
            await self.store.create_execution(execution)
            await self._fail_node(node, execution, run)
            return False
        input = validation.data or input
        execution.input = input

        # c. Reserve
        estimate = estimate_node_cost(self.node_registry, node.type, node.id, input).estimated_cost
        primary = config.provider_id
        if estimate > 0:
            reservation = await self.ledger.reserve_credits(
                run.user_id, estimate, execution.id, node_id=node.id, provider=primary,
            )
            if not reservation.success:
                available = await self.ledger.get_balance(run.user_id)
                error = InsufficientCreditsError(estimate, available)
                execution.mark_failed(error.message, INSUFFICIENT_CREDITS)
                await self.store.create_execution(execution)
                await self._fail_node(node, execution, run)
                return False
            execution.credits_reserved = estimate

        try:
            return await self._dispatch(graph, node, config, execution, run, options)
        except asyncio.CancelledError:
            await self._abandon(node, execution, run)
            raise

    async def _dispatch(
        self,
        graph: WorkflowGraph,
        node: Node,
        config: NodeConfig,
        execution: WorkflowExecution,
        run: _RunState,
        options: ProviderExecuteOptions,
    ) -> bool:
        """Steps after the reservation: running record, execute, settle."""
        # d. Running record
        execution.mark_running()
        await self.store.create_execution(execution)
        run.stored.add(execution.id)
        node.mark_executing()
        await self.events.emit(
            ExecutionEventType.NODE_STARTED, run.run_id, run.workflow_id,
            node_id=node.id, execution_id=execution.id,
            node_type=node.type, credits_reserved=execution.credits_reserved,
        )

        # e. Execute
        if config.is_local:
            output, provider_id, credits_used = _local_outputs(config, execution.input), None, None
        else:
            call_options = replace(options, request_id=execution.id)
            try:
                result = await self.provider_registry.execute_with_fallback(
                    node.type, execution.input, call_options,
                )
            except ProviderError as e:
                await self._refund(execution, run, reason=e.message)
                execution.mark_failed(e.message, e.code.value)
                await self.store.update_execution(execution)
                await self._fail_node(node, execution, run)
                return False

            if not result.success:
                error = result.error
                message = error.message if error else "Unknown error"
                code = error.code.value if error else ProviderErrorCode.UNKNOWN_ERROR.value
                await self._refund(execution, run, reason=message)
                execution.provider = result.provider
                execution.mark_failed(message, code)
                await self.store.update_execution(execution)
                await self._fail_node(node, execution, run)
                return False

            output, provider_id, credits_used = dict(result.data or {}), result.provider, result.credits_used

        # f. Success
        charged = await self._settle(execution, run, credits_used)
        execution.mark_completed(output, credits_charged=charged, provider=provider_id)
        await self.store.update_execution(execution)

        self._apply_outputs(graph, node, output, run)
        logger.info(f"Node {node.id} ({node.type}) completed, charged {charged} credits")
        await self.events.emit(
            ExecutionEventType.NODE_COMPLETED, run.run_id, run.workflow_id,
            node_id=node.id, execution_id=execution.id,
            output=output, provider=provider_id, credits_charged=charged,
        )
        return True

    async def _abandon(self, node: Node, execution: WorkflowExecution, run: _RunState) -> None:
        """Close out a node whose run task was cancelled mid-flight."""
        if execution.status.is_terminal:
            node.data["is_executing"] = False
            return
        logger.warning(f"Run {run.run_id} interrupted while node {node.id} was executing")
        await self._refund(execution, run, reason="Execution cancelled")
        execution.mark_failed("Execution cancelled", CANCELLED)
        if execution.id in run.stored:
            await self.store.update_execution(execution)
        else:
            await self.store.create_execution(execution)
        await self._fail_node(node, execution, run)

    def _apply_outputs(self, graph: WorkflowGraph, node: Node, output: dict[str, Any], run: _RunState) -> None:
        run.outputs[node.id] = output
        node.mark_clean(output)
        for target_id, values in propagate(graph, node.id, run.outputs, self.node_registry).items():
            target = graph.get_node(target_id)
            if target is not None:
                target.data.update(values)

    async def _settle(self, execution: WorkflowExecution, run: _RunState, credits_used: int | None) -> int:
        """Reconcile the reservation with the reported cost. Returns the final charge."""
        reserved = execution.credits_reserved
        if credits_used is None or self.settlement is SettlementPolicy.ESTIMATE_IS_FINAL:
            return reserved

        if credits_used < reserved:
            await self.ledger.refund_credits(
                run.user_id,
                reserved - credits_used,
                execution.id,
                reason="actual cost below estimate",
                node_id=execution.node_id,
            )
            return credits_used

        if credits_used > reserved:
            logger.warning(
                f"Execution {execution.id} cost {credits_used} credits, "
                f"above the {reserved} reserved; charging the reservation"
            )
        return reserved

    async def _refund(self, execution: WorkflowExecution, run: _RunState, reason: str) -> None:
        if execution.credits_reserved > 0:
            await self.ledger.refund_credits(
                run.user_id,
                execution.credits_reserved,
                execution.id,
                reason=reason,
                node_id=execution.node_id,
            )

    async def _fail_node(self, node: Node, execution: WorkflowExecution, run: _RunState) -> None:
        node.mark_error(execution.error or "Execution failed")
        run.failed = execution
        logger.warning(f"Node {node.id} ({node.type}) failed [{execution.error_code}]: {execution.error}")
        await self.events.emit(
            ExecutionEventType.NODE_FAILED, run.run_id, run.workflow_id,
            node_id=node.id, execution_id=execution.id,
            error=execution.error, error_code=execution.error_code,
        )

    async def _finish(self, run: _RunState) -> RunResult:
        result = RunResult(
            run_id=run.run_id,
            status=RunStatus.COMPLETED,
            executions=list(run.executions),
            outputs=dict(run.outputs),
            credits_charged=sum(e.credits_charged for e in run.executions),
        )

        if run.abort.is_set():
            result.status = RunStatus.CANCELLED
            result.error = "Execution cancelled"
            result.error_code = CANCELLED
            if run.failed is not None:
                result.failed_node_id = run.failed.node_id
            event = ExecutionEventType.RUN_CANCELLED
        elif run.failed is not None:
            result.status = RunStatus.FAILED
            result.failed_node_id = run.failed.node_id
            result.error = run.failed.error
            result.error_code = run.failed.error_code
            event = ExecutionEventType.RUN_FAILED
        else:
            event = ExecutionEventType.RUN_COMPLETED

        logger.info(
            f"Run {run.run_id} {result.status.value}: "
            f"{len(result.executions)} executions, {result.credits_charged} credits"
        )
        await self.events.emit(
            event, run.run_id, run.workflow_id,
            node_id=result.failed_node_id,
            status=result.status.value,
            error=result.error,
            error_code=result.error_code,
            credits_charged=result.credits_charged,
        )
        return result


@dataclass
class _RunState:
    """Mutable bookkeeping for one run."""
    run_id: str
    workflow_id: str
    user_id: str
    abort: asyncio.Event
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    executions: list[WorkflowExecution] = field(default_factory=list)
    failed: WorkflowExecution | None = None
    # Execution ids already written to the store
    stored: set[str] = field(default_factory=set)

    def new_execution(self, node: Node, input: dict[str, Any]) -> WorkflowExecution:
        execution = WorkflowExecution(
            id=new_record_id("exec"),
            workflow_id=self.workflow_id,
            user_id=self.user_id,
            node_id=node.id,
            node_type=node.type,
            run_id=self.run_id,
            input=dict(input),
        )
        self.executions.append(execution)
        return execution


def _local_outputs(config: NodeConfig, input: Mapping[str, Any]) -> dict[str, Any]:
    """Outputs of a node evaluated in-process: each output key read from the input."""
    return {handle.key: input.get(handle.key) for handle in config.outputs}
