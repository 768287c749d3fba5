from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from consultdesk.context import get_correlation_id
from consultdesk.core.events import event_bus

CONSULTATION_SUBMITTED = "consultation.submitted"
CONSULTATION_STATUS_CHANGED = "consultation.status_changed"

# Most recent envelopes only; older ones fall off so payloads are not retained
# for the life of the process.
PUBLISHED_EVENTS_LIMIT = 50
published_events: deque[dict[str, Any]] = deque(maxlen=PUBLISHED_EVENTS_LIMIT)


def publish(event_type: str, *, actor_user_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
    """Record a domain event envelope and fan it out to in-process subscribers.

    Callers publish only after their own transaction has committed, so a
    subscriber never observes state that could still be rolled back.
    """

    envelope: dict[str, Any] = {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        "correlation_id": get_correlation_id(),
        "version": 1,
        "payload": payload,
    }
    published_events.append(envelope)
    event_bus.publish(event_type, envelope)
    return envelope
