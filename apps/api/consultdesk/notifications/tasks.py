from __future__ import annotations

from typing import Any

from consultdesk.core.celery_app import celery_app
from consultdesk.notifications.dispatcher import NotificationIntent, build_dispatcher


@celery_app.task(name="consultdesk.notifications.deliver")
def deliver_notification(payload: dict[str, Any]) -> list[dict[str, Any]]:
    dispatcher = build_dispatcher()
    try:
        results = dispatcher.deliver(NotificationIntent.from_payload(payload))
    finally:
        dispatcher.shutdown()
    return [
        {
            "channel": result.channel,
            "destination": result.destination,
            "delivered": result.delivered,
            "reference": result.reference,
            "failure_reason": result.failure_reason,
        }
        for result in results
    ]
