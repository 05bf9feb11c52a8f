"""
Event Bus - Diagnostics sink for graph executions.

The executor reports every state transition, rejected edge, truncation,
loop termination and isolated branch failure as a FlowEvent. Subscribers
can:
- React to specific event types (e.g. refresh a node's error indicator)
- Filter by node or execution
- Inspect the bounded history after a run
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Execution lifecycle
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"

    # Edge gate
    TYPE_MISMATCH = "type_mismatch"

    # Splitter
    ITEMS_SPLIT = "items_split"
    ITEMS_TRUNCATED = "items_truncated"

    # Collector
    ITEM_COLLECTED = "item_collected"
    ITEMS_COMBINED = "items_combined"

    # Isolated failure in a fan-out branch
    BRANCH_FAILED = "branch_failed"

    # Conditional / feedback loop
    CONDITION_PASSED = "condition_passed"
    CONDITION_FAILED = "condition_failed"
    FEEDBACK_SENT = "feedback_sent"
    FEEDBACK_UNAVAILABLE = "feedback_unavailable"
    LOOP_TERMINATED = "loop_terminated"


@dataclass
class FlowEvent:
    """A diagnostic event emitted during execution."""

    type: EventType
    message: str
    level: str = "info"  # debug, info, warning, error
    node_id: str | None = None  # Which node emitted this event
    execution_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "level": self.level,
            "node_id": self.node_id,
            "message": self.message,
            "execution_id": self.execution_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_node: str | None = None  # Only receive events from this node
    filter_execution: str | None = None  # Only receive events from this execution


class EventBus:
    """
    Pub/sub bus for execution diagnostics.

    Example:
        bus = EventBus()

        async def on_failure(event: FlowEvent):
            print(f"{event.node_id}: {event.message}")

        bus.subscribe(
            event_types=[EventType.NODE_FAILED, EventType.BRANCH_FAILED],
            handler=on_failure,
        )

        executor = GraphExecutor(adapter=adapter, event_bus=bus)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_node: str | None = None,
        filter_execution: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_node=filter_node,
            filter_execution=filter_execution,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")

        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if subscription was found and removed
        """
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Publish an event to all matching subscribers."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            subscription.handler
            for subscription in self._subscriptions.values()
            if self._matches(subscription, event)
        ]

        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        """Check if a subscription matches an event."""
        if event.type not in subscription.event_types:
            return False

        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False

        if subscription.filter_execution and subscription.filter_execution != event.execution_id:
            return False

        return True

    async def _execute_handlers(
        self,
        event: FlowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers])

    def get_history(
        self,
        event_type: EventType | None = None,
        node_id: str | None = None,
        execution_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """
        Get recent events from history, newest last.

        Args:
            event_type: Filter by event type
            node_id: Filter by node
            execution_id: Filter by execution
            limit: Maximum events to return
        """
        events = self._event_history
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        if node_id is not None:
            events = [e for e in events if e.node_id == node_id]
        if execution_id is not None:
            events = [e for e in events if e.execution_id == execution_id]
        return events[-limit:]

    def clear_history(self) -> None:
        self._event_history = []
