# MARKETSCOPE_FEAT: event-bus-001
"""
MARKETSCOPE - Event Bus
=======================

Async publish/subscribe router; the only channel the kernel components
use to talk to each other and to plugins.

Features:
- Exact-type and wildcard subscriptions
- Priority-ordered delivery (higher priority first, wildcard before exact)
- Queue-while-delivering: one event at a time, strict arrival order
- Bounded event history and dead letter list for failed deliveries

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Set, Union
from uuid import uuid4

logger = logging.getLogger("MARKETSCOPE_EventBus")

WILDCARD = "*"
DEFAULT_HISTORY_SIZE = 1000
DEFAULT_DEAD_LETTER_SIZE = 1000


class EventType(str, Enum):
    """Event types produced by the kernel components."""

    # Plugin registry
    PLUGIN_LOADING = "plugin.loading"
    PLUGIN_LOADED = "plugin.loaded"
    PLUGIN_LOAD_ERROR = "plugin.load.error"
    PLUGIN_REGISTERING = "plugin.registering"
    PLUGIN_REGISTERED = "plugin.registered"
    PLUGIN_REGISTER_ERROR = "plugin.register.error"
    PLUGIN_UNLOADING = "plugin.unloading"
    PLUGIN_UNLOADED = "plugin.unloaded"
    PLUGIN_UNLOAD_ERROR = "plugin.unload.error"
    PLUGIN_STATUS_CHANGED = "plugin.status.changed"

    # Plugin base class
    PLUGIN_INITIALIZED = "plugin.initialized"
    PLUGIN_STARTED = "plugin.started"
    PLUGIN_STOPPED = "plugin.stopped"
    PLUGIN_CLEANUP = "plugin.cleanup"
    PLUGIN_CONFIG_UPDATED = "plugin.config.updated"

    # Service container
    SERVICE_REGISTERED = "service.registered"
    SERVICE_RESOLVED = "service.resolved"
    SERVICE_UNREGISTERED = "service.unregistered"
    SERVICE_CONTAINER_CLEARED = "service.container.cleared"

    # Lifecycle manager
    LIFECYCLE_PHASE_REGISTERED = "lifecycle.phase.registered"
    LIFECYCLE_HOOK_REGISTERED = "lifecycle.hook.registered"
    LIFECYCLE_HOOK_UNREGISTERED = "lifecycle.hook.unregistered"
    LIFECYCLE_STARTING = "lifecycle.starting"
    LIFECYCLE_STARTED = "lifecycle.started"
    LIFECYCLE_START_ERROR = "lifecycle.start.error"
    LIFECYCLE_STOPPING = "lifecycle.stopping"
    LIFECYCLE_STOPPED = "lifecycle.stopped"
    LIFECYCLE_STOP_ERROR = "lifecycle.stop.error"
    LIFECYCLE_PHASE_STARTING = "lifecycle.phase.starting"
    LIFECYCLE_PHASE_COMPLETED = "lifecycle.phase.completed"
    LIFECYCLE_PHASE_ERROR = "lifecycle.phase.error"
    LIFECYCLE_HOOK_COMPLETED = "lifecycle.hook.completed"
    LIFECYCLE_HOOK_ERROR = "lifecycle.hook.error"
    LIFECYCLE_HOOK_ENABLED_CHANGED = "lifecycle.hook.enabled.changed"

    # Configuration
    CONFIG_SOURCE_ADDED = "config.source.added"
    CONFIG_SOURCE_ERROR = "config.source.error"
    CONFIG_LOADING_STARTED = "config.loading.started"
    CONFIG_LOADING_COMPLETED = "config.loading.completed"
    CONFIG_LOADING_ERROR = "config.loading.error"
    CONFIG_VALUE_CHANGED = "config.value.changed"
    CONFIG_VALUE_DELETED = "config.value.deleted"
    CONFIG_VALIDATION_ERROR = "config.validation.error"
    CONFIG_SAVED = "config.saved"
    CONFIG_SAVE_ERROR = "config.save.error"

    # Kernel
    KERNEL_STARTING = "kernel.starting"
    KERNEL_STARTED = "kernel.started"
    KERNEL_START_ERROR = "kernel.start.error"
    KERNEL_STOPPING = "kernel.stopping"
    KERNEL_STOPPED = "kernel.stopped"
    KERNEL_STOP_ERROR = "kernel.stop.error"
    KERNEL_PLUGIN_LOADED = "kernel.plugin.loaded"
    KERNEL_PLUGIN_LOAD_ERROR = "kernel.plugin.load.error"
    KERNEL_PLUGIN_REGISTERED = "kernel.plugin.registered"
    KERNEL_PLUGIN_REGISTER_ERROR = "kernel.plugin.register.error"
    KERNEL_PLUGIN_UNLOADED = "kernel.plugin.unloaded"
    KERNEL_PLUGIN_UNLOAD_ERROR = "kernel.plugin.unload.error"


def event_type_name(event_type: Union[str, EventType]) -> str:
    """Normalize an EventType member or plain string to the plain tag."""
    if isinstance(event_type, Enum):
        return str(event_type.value)
    return str(event_type)


@dataclass(frozen=True)
class Event:
    """
    Event message; immutable once published.

    Metadata is a read-only mapping. The data payload is shared with the
    publisher and every handler, so handlers must treat it as read-only.
    """

    id: str
    type: str
    data: Any
    timestamp: datetime
    source: Optional[str] = None
    target: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "target": self.target,
            "metadata": dict(self.metadata),
        }


# Handlers may be plain functions or coroutine functions
EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


@dataclass
class Subscription:
    """Event subscription."""

    id: str
    event_type: str
    handler: EventHandler
    priority: int = 0
    active: bool = True


def _generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


class EventBus:
    """
    Async event bus for kernel and plugin communication.

    Delivery happens one event at a time. A publish that arrives while
    another event is being delivered (including one made from inside a
    handler) is queued, and the publisher that started delivery drains
    the queue in arrival order before it returns.

    Example:
        bus = EventBus()

        async def on_loaded(event: Event):
            print(f"Plugin loaded: {event.data['plugin_id']}")

        bus.subscribe("plugin.loaded", on_loaded, priority=5)

        await bus.publish("plugin.loaded", {"plugin_id": "yahoo-finance"},
                          source="plugin-registry")
    """

    def __init__(self, max_history_size: int = DEFAULT_HISTORY_SIZE):
        if max_history_size < 0:
            raise ValueError("max_history_size must be >= 0")

        self._handlers: Dict[str, List[Subscription]] = {}
        self._global_handlers: List[Subscription] = []
        self._history: Deque[Event] = deque(maxlen=max_history_size)
        self._max_history_size = max_history_size
        self._pending: Deque[Event] = deque()
        self._delivering = False
        self._tasks: Set[asyncio.Task] = set()
        self._dead_letter: Deque[Event] = deque(maxlen=DEFAULT_DEAD_LETTER_SIZE)
        self._stats = {
            "events_published": 0,
            "events_delivered": 0,
            "events_failed": 0,
        }

        logger.info("EventBus initialized")

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        event_type: Union[str, EventType],
        handler: EventHandler,
        priority: int = 0,
        subscription_id: Optional[str] = None,
    ) -> str:
        """
        Subscribe to an exact event type.

        Args:
            event_type: Event type tag
            handler: Sync or async handler
            priority: Handler priority (higher = earlier)
            subscription_id: Optional caller-chosen id

        Returns:
            Subscription ID
        """
        event_type = event_type_name(event_type)
        subscription = Subscription(
            id=subscription_id or _generate_id("sub"),
            event_type=event_type,
            handler=handler,
            priority=priority,
        )

        bucket = self._handlers.setdefault(event_type, [])
        bucket.append(subscription)
        bucket.sort(key=lambda s: s.priority, reverse=True)

        logger.debug(f"Subscription added: {subscription.id} -> {event_type}")
        return subscription.id

    def subscribe_to_all(self, handler: EventHandler, priority: int = 0) -> str:
        """Subscribe a handler to every published event."""
        subscription = Subscription(
            id=_generate_id("sub"),
            event_type=WILDCARD,
            handler=handler,
            priority=priority,
        )

        self._global_handlers.append(subscription)
        self._global_handlers.sort(key=lambda s: s.priority, reverse=True)

        logger.debug(f"Wildcard subscription added: {subscription.id}")
        return subscription.id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription from the exact-type or wildcard sets."""
        for bucket in self._handlers.values():
            for index, subscription in enumerate(bucket):
                if subscription.id == subscription_id:
                    del bucket[index]
                    logger.debug(f"Subscription removed: {subscription_id}")
                    return True

        for index, subscription in enumerate(self._global_handlers):
            if subscription.id == subscription_id:
                del self._global_handlers[index]
                logger.debug(f"Wildcard subscription removed: {subscription_id}")
                return True

        return False

    def get_subscriptions(self) -> List[Subscription]:
        """All subscriptions, exact-type buckets first, then wildcard."""
        subscriptions: List[Subscription] = []
        for bucket in self._handlers.values():
            subscriptions.extend(bucket)
        subscriptions.extend(self._global_handlers)
        return subscriptions

    def get_subscription_count(self, event_type: Union[str, EventType]) -> int:
        """Number of exact-type subscriptions for an event type."""
        return len(self._handlers.get(event_type_name(event_type), []))

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(
        self,
        event_type: Union[str, EventType],
        data: Any = None,
        *,
        source: Optional[str] = None,
        target: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """
        Publish an event.

        Stamps id and timestamp, records it in history, then delivers it.
        If a delivery is already in flight the event is only queued.

        Returns:
            The stamped event
        """
        event = self._enqueue(event_type, data, source, target, metadata)
        await self._drain()
        return event

    def emit(
        self,
        event_type: Union[str, EventType],
        data: Any = None,
        *,
        source: Optional[str] = None,
        target: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """
        Publish from synchronous code without waiting for delivery.

        The event joins the same delivery queue as publish(). Delivery is
        scheduled on the running loop; with no loop running it happens on
        the next publish().
        """
        event = self._enqueue(event_type, data, source, target, metadata)

        if not self._delivering:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return event

            task = loop.create_task(self._drain())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return event

    async def flush(self) -> None:
        """Deliver everything queued, including events from emit()."""
        await self._drain()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _enqueue(
        self,
        event_type: Union[str, EventType],
        data: Any,
        source: Optional[str],
        target: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> Event:
        event = Event(
            id=_generate_id("evt"),
            type=event_type_name(event_type),
            data=data,
            timestamp=datetime.now(timezone.utc),
            source=source,
            target=target,
            metadata=MappingProxyType(dict(metadata or {})),
        )

        self._history.append(event)
        self._pending.append(event)
        self._stats["events_published"] += 1

        logger.debug(f"Event published: {event.type} from {event.source}")
        return event

    async def _drain(self) -> None:
        """Deliver queued events in arrival order; no-op if already delivering."""
        if self._delivering:
            return

        self._delivering = True
        try:
            while self._pending:
                await self._dispatch_event(self._pending.popleft())
        finally:
            self._delivering = False

    async def _dispatch_event(self, event: Event) -> int:
        """Dispatch to wildcard handlers, then exact-type handlers."""
        handlers_called = 0
        subscriptions = list(self._global_handlers) + list(self._handlers.get(event.type, []))

        for subscription in subscriptions:
            if not subscription.active:
                continue

            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
                handlers_called += 1
                self._stats["events_delivered"] += 1
            except Exception as e:
                logger.error(
                    f"Handler error for {subscription.id} on event {event.type}: {e}"
                )
                self._dead_letter.append(event)
                self._stats["events_failed"] += 1

        return handlers_called

    @property
    def is_delivering(self) -> bool:
        """True while an event is being handed to handlers."""
        return self._delivering

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def get_history(
        self,
        limit: Optional[int] = None,
        event_type: Optional[Union[str, EventType]] = None,
    ) -> List[Event]:
        """Get event history in publish order, optionally filtered by type."""
        events = list(self._history)

        if event_type is not None:
            name = event_type_name(event_type)
            events = [e for e in events if e.type == name]

        if limit is not None:
            return events[-limit:] if limit > 0 else []
        return events

    def clear_history(self) -> None:
        """Drop all recorded events."""
        self._history.clear()

    def set_max_history_size(self, size: int) -> None:
        """Change the history bound, keeping the most recent events."""
        if size < 0:
            raise ValueError("max history size must be >= 0")

        self._max_history_size = size
        self._history = deque(list(self._history)[-size:] if size else [], maxlen=size)

    @property
    def max_history_size(self) -> int:
        """Current history bound."""
        return self._max_history_size

    def clear_dead_letter(self) -> List[Event]:
        """Clear and return events whose delivery raised."""
        events = list(self._dead_letter)
        self._dead_letter.clear()
        return events

    def get_stats(self) -> Dict[str, Any]:
        """Get event bus statistics."""
        return {
            **self._stats,
            "subscribers": len(self.get_subscriptions()),
            "pending": len(self._pending),
            "dead_letter_count": len(self._dead_letter),
            "history_size": len(self._history),
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "WILDCARD",
    "DEFAULT_HISTORY_SIZE",
    "DEFAULT_DEAD_LETTER_SIZE",
    "EventType",
    "Event",
    "EventHandler",
    "Subscription",
    "EventBus",
    "event_type_name",
]
