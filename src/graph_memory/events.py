"""
Observer surface for adapter notifications.

Consumers subscribe to the event kinds they care about; the adapter publishes
fire-and-forget notifications. A subscriber that raises is logged and never
affects the publisher or other subscribers.

Usage:
    bus = EventBus()

    bus.subscribe(AdapterEvent.MEMORY_ADDED, lambda event: print(event.payload.uuid))
    bus.subscribe("*", lambda event: audit(event))

    bus.publish(AdapterEvent.CONNECTED)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List, Union

from .observability import log_debug, log_error


class AdapterEvent(str, Enum):
    """Event kinds emitted by the adapter."""

    CONNECTED = "connected"
    FALLBACK = "fallback"
    ERROR = "error"
    MEMORY_ADDED = "memory:added"
    FACT_UPDATED = "fact:updated"
    HIVEMIND_SHARE = "hivemind:share"
    GRAPH_CLEARED = "graph:cleared"
    SYNC_COMPLETED = "sync:completed"
    DESTROYED = "destroyed"


WILDCARD = "*"


@dataclass(frozen=True)
class Event:
    """A single published notification."""

    event_type: AdapterEvent
    payload: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventCallback = Callable[[Event], None]
EventKey = Union[AdapterEvent, str]


def _normalize(event_type: EventKey) -> str:
    if event_type == WILDCARD:
        return WILDCARD
    return AdapterEvent(event_type).value


class EventBus:
    """
    In-process multi-subscriber event bus.

    Supports:
    - subscribe(event_type, callback): register callbacks for one event kind
    - publish(event_type, payload): notify all matching subscribers
    - Wildcard subscription: subscribe('*', callback) receives all events
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[EventCallback]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: EventKey, callback: EventCallback) -> None:
        """
        Subscribe to events of a specific kind.

        Args:
            event_type: An AdapterEvent (or its string value), or '*' for all
            callback: Called with the Event; its return value is ignored

        Raises:
            ValueError: If event_type is not a known event kind
        """
        key = _normalize(event_type)
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)
        log_debug(f"Subscribed to {key}: {getattr(callback, '__name__', 'callable')}")

    def unsubscribe(self, event_type: EventKey, callback: EventCallback) -> bool:
        """
        Remove a callback.

        Returns:
            True if callback was found and removed, False otherwise
        """
        key = _normalize(event_type)
        with self._lock:
            callbacks = self._subscribers.get(key)
            if not callbacks:
                return False
            try:
                callbacks.remove(callback)
            except ValueError:
                return False
            if not callbacks:
                del self._subscribers[key]
        return True

    def publish(self, event_type: AdapterEvent, payload: Any = None) -> Event:
        """
        Publish an event to specific and wildcard subscribers.

        Returns:
            The Event that was delivered
        """
        event = Event(event_type=AdapterEvent(event_type), payload=payload)
        key = event.event_type.value

        # Copy so callbacks can (un)subscribe without holding the lock
        with self._lock:
            specific = list(self._subscribers.get(key, []))
            wildcard = list(self._subscribers.get(WILDCARD, []))

        for callback in specific + wildcard:
            try:
                callback(event)
            except Exception as exc:
                log_error(f"Error in subscriber callback for {key}: {exc}")

        log_debug(f"Published {key} to {len(specific) + len(wildcard)} subscribers")
        return event

    def clear(self) -> None:
        """Drop all subscriptions."""
        with self._lock:
            self._subscribers.clear()

    def subscriber_count(self, event_type: EventKey | None = None) -> int:
        """Count subscribers for one event kind, or all when omitted."""
        with self._lock:
            if event_type is not None:
                return len(self._subscribers.get(_normalize(event_type), []))
            return sum(len(subs) for subs in self._subscribers.values())
