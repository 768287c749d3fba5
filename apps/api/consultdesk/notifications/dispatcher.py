from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from consultdesk import events
from consultdesk.context import correlation_scope
from consultdesk.core.config import Settings, get_settings
from consultdesk.core.events import InternalEvent
from consultdesk.metrics import observe_notification_delivery, observe_notification_intent
from consultdesk.notifications.channels import DeliveryResult, EmailChannel, NotificationChannel, WhatsAppChannel
from consultdesk.notifications.templates import (
    render_new_consultation_admin,
    render_new_consultation_client,
    render_new_consultation_whatsapp,
    render_status_update,
)
from consultdesk.otel import get_tracer

logger = logging.getLogger("consultdesk.notifications")
tracer = get_tracer("consultdesk.notifications")

INTENT_TYPES = (events.CONSULTATION_SUBMITTED, events.CONSULTATION_STATUS_CHANGED)


@dataclass(frozen=True)
class NotificationIntent:
    intent_type: str
    consultation: dict[str, Any]
    correlation_id: str | None = None
    occurred_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_envelope(cls, envelope: dict[str, Any]) -> NotificationIntent:
        return cls(
            intent_type=str(envelope["event_type"]),
            consultation=dict(envelope.get("payload") or {}),
            correlation_id=envelope.get("correlation_id"),
            occurred_at=str(envelope.get("occurred_at") or datetime.now(timezone.utc).isoformat()),
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> NotificationIntent:
        return cls(**payload)

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OutboundMessage:
    channel: NotificationChannel
    destination: str
    subject: str | None
    body: str
    html_body: str | None = None


class NotificationDispatcher:
    """Detached delivery of lifecycle notifications.

    ``enqueue`` hands the intent to a worker thread and returns immediately.
    A delivery failure is logged and counted; it never reaches the request
    that triggered it.
    """

    def __init__(
        self,
        *,
        email: NotificationChannel,
        whatsapp: NotificationChannel,
        admin_email: str,
        admin_whatsapp: str = "",
        brand: str = "Consultdesk",
        workers: int = 4,
        queue: str = "inprocess",
    ) -> None:
        self.email = email
        self.whatsapp = whatsapp
        self.admin_email = admin_email
        self.admin_whatsapp = admin_whatsapp
        self.brand = brand
        self.queue = queue
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="notify")
        self._pending: set[Future[list[DeliveryResult]]] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> NotificationDispatcher:
        return cls(
            email=EmailChannel.from_settings(settings),
            whatsapp=WhatsAppChannel.from_settings(settings),
            admin_email=settings.admin_email,
            admin_whatsapp=settings.admin_whatsapp,
            brand=settings.smtp_from_name,
            workers=settings.notification_workers,
            queue=settings.notification_queue,
        )

    def handle_event(self, event: InternalEvent) -> None:
        if not isinstance(event.payload, dict) or event.name not in INTENT_TYPES:
            return
        intent = NotificationIntent.from_envelope(event.payload)
        if self.queue == "celery":
            self._hand_off_to_celery(intent)
            return
        self.enqueue(intent)

    def enqueue(self, intent: NotificationIntent) -> Future[list[DeliveryResult]]:
        future = self._executor.submit(self.deliver, intent)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def deliver(self, intent: NotificationIntent) -> list[DeliveryResult]:
        started = time.perf_counter()
        with correlation_scope(intent.correlation_id):
            try:
                with tracer.start_as_current_span("notification.deliver") as span:
                    span.set_attribute("notification.intent_type", intent.intent_type)
                    span.set_attribute("consultation.id", str(intent.consultation.get("consultation_id", "")))
                    results = asyncio.run(self._send_all(self.build_messages(intent)))
            except Exception as exc:
                logger.exception(
                    "notification.intent_failed",
                    extra={
                        "intent_type": intent.intent_type,
                        "consultation_id": intent.consultation.get("consultation_id"),
                        "error": str(exc),
                    },
                )
                return []
            finally:
                observe_notification_intent(intent.intent_type, time.perf_counter() - started)

        for result in results:
            observe_notification_delivery(result.channel, result.delivered)
        return results

    def build_messages(self, intent: NotificationIntent) -> list[OutboundMessage]:
        consultation = intent.consultation
        now = datetime.now(timezone.utc)
        messages: list[OutboundMessage] = []

        if intent.intent_type == events.CONSULTATION_SUBMITTED:
            admin = render_new_consultation_admin(consultation, brand=self.brand, now=now)
            client = render_new_consultation_client(consultation, brand=self.brand, now=now)
            messages.append(OutboundMessage(self.email, self.admin_email, admin.subject, admin.text, admin.html))
            messages.append(
                OutboundMessage(self.email, consultation["email"], client.subject, client.text, client.html)
            )
            if self.admin_whatsapp:
                messages.append(
                    OutboundMessage(
                        self.whatsapp,
                        self.admin_whatsapp,
                        None,
                        render_new_consultation_whatsapp(consultation),
                    )
                )
        elif intent.intent_type == events.CONSULTATION_STATUS_CHANGED:
            update = render_status_update(consultation, brand=self.brand, now=now)
            messages.append(
                OutboundMessage(self.email, consultation["email"], update.subject, update.text, update.html)
            )
        return messages

    async def _send_all(self, messages: list[OutboundMessage]) -> list[DeliveryResult]:
        return list(
            await asyncio.gather(
                *(
                    message.channel.send(
                        message.destination,
                        message.subject,
                        message.body,
                        html_body=message.html_body,
                    )
                    for message in messages
                )
            )
        )

    def _hand_off_to_celery(self, intent: NotificationIntent) -> None:
        from consultdesk.notifications.tasks import deliver_notification

        try:
            deliver_notification.delay(intent.to_payload())
        except Exception as exc:
            logger.exception("notification.handoff_failed", extra={"intent_type": intent.intent_type, "error": str(exc)})

    def _forget(self, future: Future[list[DeliveryResult]]) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = 10.0) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)


_dispatcher: NotificationDispatcher | None = None


def install_dispatcher(dispatcher: NotificationDispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> NotificationDispatcher | None:
    return _dispatcher


def build_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher.from_settings(get_settings())


def on_consultation_event(event: InternalEvent) -> None:
    dispatcher = _dispatcher
    if dispatcher is None:
        logger.warning("notification.no_dispatcher", extra={"intent_type": event.name})
        return
    dispatcher.handle_event(event)
