from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("consultdesk.events")


@dataclass(frozen=True)
class InternalEvent:
    name: str
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out of committed domain events to in-process subscribers.

    Subscribers only react to state that is already durable, so a failing one
    is logged and skipped rather than surfaced to the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, tuple[EventHandler, ...]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        with self._lock:
            current = self._subscribers.get(event_name, ())
            if handler not in current:
                self._subscribers[event_name] = (*current, handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        with self._lock:
            remaining = tuple(item for item in self._subscribers.get(event_name, ()) if item != handler)
            if remaining:
                self._subscribers[event_name] = remaining
            else:
                self._subscribers.pop(event_name, None)

    def subscribers(self, event_name: str) -> tuple[EventHandler, ...]:
        return self._subscribers.get(event_name, ())

    def publish(self, event_name: str, payload: dict[str, Any]) -> int:
        """Returns how many subscribers handled the event without raising."""
        event = InternalEvent(name=event_name, payload=payload)
        handled = 0
        for handler in self.subscribers(event_name):
            try:
                handler(event)
            except Exception as exc:
                logger.exception("event.handler_failed", extra={"reference": event_name, "error": str(exc)})
                continue
            handled += 1
        return handled


event_bus = InProcessEventBus()
