"""
Execution Events - Pub/sub for run and node lifecycle.

Lets callers:
- Follow a run's progress without polling the store
- Filter events by run or node
- Wait for a specific event, e.g. a run finishing
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class ExecutionEventType(StrEnum):
    """Types of events published by the orchestrator."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"


RUN_FINISHED_EVENTS = frozenset({
    ExecutionEventType.RUN_COMPLETED,
    ExecutionEventType.RUN_FAILED,
    ExecutionEventType.RUN_CANCELLED,
})


@dataclass
class ExecutionEvent:
    """An event emitted during a run."""

    type: ExecutionEventType
    run_id: str
    workflow_id: str | None = None
    node_id: str | None = None
    execution_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "execution_id": self.execution_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Handlers may be plain functions or coroutines
EventHandler = Callable[[ExecutionEvent], Awaitable[None] | None]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[ExecutionEventType]
    handler: EventHandler
    filter_run: str | None = None  # Only receive events from this run
    filter_node: str | None = None  # Only receive events about this node


class ExecutionEventBus:
    """
    Pub/sub event bus for execution progress.

    A failing handler is logged and never interrupts the publisher.

    Example:
        bus = ExecutionEventBus()

        def on_node_done(event: ExecutionEvent):
            print(f"{event.node_id} finished")

        bus.subscribe([ExecutionEventType.NODE_COMPLETED], on_node_done, filter_run=run_id)
    """

    def __init__(self, max_history: int = 1000):
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[ExecutionEvent] = []
        self._max_history = max_history
        self._subscription_counter = 0

    def subscribe(
        self,
        event_types: list[ExecutionEventType] | None,
        handler: EventHandler,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            event_types: Types of events to receive; None for all
            handler: Function or coroutine function called per event
            filter_run: Only receive events from this run
            filter_node: Only receive events about this node

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types or ExecutionEventType),
            handler=handler,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types or 'all events'}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: ExecutionEvent) -> None:
        """Publish an event to all matching subscribers."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        handlers = [
            sub.handler for sub in list(self._subscriptions.values())
            if self._matches(sub, event)
        ]
        if handlers:
            await asyncio.gather(*(self._run_handler(h, event) for h in handlers))

    def _matches(self, subscription: Subscription, event: ExecutionEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _run_handler(self, handler: EventHandler, event: ExecutionEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Handler error for {event.type}: {e}")

    # === CONVENIENCE PUBLISHERS ===

    async def emit(
        self,
        type: ExecutionEventType,
        run_id: str,
        workflow_id: str | None = None,
        node_id: str | None = None,
        execution_id: str | None = None,
        **data: Any,
    ) -> None:
        """Build and publish an event in one call."""
        await self.publish(ExecutionEvent(
            type=type,
            run_id=run_id,
            workflow_id=workflow_id,
            node_id=node_id,
            execution_id=execution_id,
            data=data,
        ))

    # === QUERIES ===

    def get_history(
        self,
        event_type: ExecutionEventType | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionEvent]:
        """Recent events, most recent first."""
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        return events[:limit]

    async def wait_for(
        self,
        event_types: set[ExecutionEventType] | frozenset[ExecutionEventType],
        run_id: str | None = None,
        timeout: float | None = None,
    ) -> ExecutionEvent | None:
        """
        Wait for the next event of one of ``event_types``.

        Returns:
            The event, or None on timeout
        """
        result: ExecutionEvent | None = None
        received = asyncio.Event()

        def handler(event: ExecutionEvent) -> None:
            nonlocal result
            if result is None:
                result = event
            received.set()

        sub_id = self.subscribe(list(event_types), handler, filter_run=run_id)
        try:
            await asyncio.wait_for(received.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self.unsubscribe(sub_id)
        return result
