from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

from consultdesk import events
from consultdesk.core.events import InternalEvent
from consultdesk.identity.models import User
from consultdesk.notifications import tasks
from consultdesk.notifications.channels import EmailChannel, WhatsAppChannel
from consultdesk.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationIntent,
    install_dispatcher,
)
from consultdesk.notifications.templates import (
    render_new_consultation_admin,
    render_new_consultation_whatsapp,
    render_status_update,
)
from consultdesk.otel import capture_spans_in_memory
from conftest import ADMIN_INBOX, ADMIN_WHATSAPP, RecordingChannel

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _consultation(**overrides: Any) -> dict[str, Any]:
    consultation: dict[str, Any] = {
        "consultation_id": "5b1f2c1e-8a8e-4a53-9a4c-0d6f5a2b7c11",
        "name": "Alice Client",
        "email": "a@x.com",
        "phone": "+15551234567",
        "organization": None,
        "service": "digital",
        "message": "We need help planning our digital transformation roadmap.",
        "status": "pending",
        "priority": "medium",
        "created_at": "2026-03-10T12:00:00+00:00",
    }
    consultation.update(overrides)
    return consultation


def _unconfigured_email() -> EmailChannel:
    return EmailChannel(host="smtp.example.com", port=587, username="", password="", from_name="Consultdesk")


def test_submission_notifies_admin_and_client(
    client: TestClient,
    dispatcher: NotificationDispatcher,
    email_channel: RecordingChannel,
    whatsapp_channel: RecordingChannel,
    submit_consultation: Callable[..., dict[str, Any]],
) -> None:
    receipt = submit_consultation(email="a@x.com")
    dispatcher.drain()

    by_destination = {message["destination"]: message for message in email_channel.sent}
    assert set(by_destination) == {ADMIN_INBOX, "a@x.com"}
    assert by_destination[ADMIN_INBOX]["subject"] == "New Consultation Request - digital"
    assert receipt["request_id"] in by_destination[ADMIN_INBOX]["html_body"]
    assert by_destination["a@x.com"]["subject"] == "Consultation Request Received - Consultdesk"
    assert "Dear Alice Client" in by_destination["a@x.com"]["body"]

    assert [message["destination"] for message in whatsapp_channel.sent] == [ADMIN_WHATSAPP]
    assert whatsapp_channel.sent[0]["body"].startswith("NEW CONSULTATION REQUEST")


def test_status_change_notifies_client(
    client: TestClient,
    dispatcher: NotificationDispatcher,
    email_channel: RecordingChannel,
    submit_consultation: Callable[..., dict[str, Any]],
    partner: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    receipt = submit_consultation(email="a@x.com")
    dispatcher.drain()
    email_channel.sent.clear()

    response = client.patch(
        f"/api/consultations/{receipt['request_id']}/status",
        json={"status": "in-progress"},
        headers=auth_headers(partner),
    )
    assert response.status_code == 200
    dispatcher.drain()

    assert len(email_channel.sent) == 1
    message = email_channel.sent[0]
    assert message["destination"] == "a@x.com"
    assert message["subject"] == "Consultation Update - in progress"
    assert "Your consultation is now in progress." in message["body"]


def test_delivery_failure_does_not_fail_the_request(
    client: TestClient,
    consultation_payload: Callable[..., dict[str, Any]],
) -> None:
    failing = NotificationDispatcher(
        email=RecordingChannel("email", error=RuntimeError("smtp unreachable")),
        whatsapp=RecordingChannel("whatsapp", configured=False),
        admin_email=ADMIN_INBOX,
        admin_whatsapp=ADMIN_WHATSAPP,
        workers=1,
    )
    install_dispatcher(failing)
    try:
        response = client.post("/api/consultations", json=consultation_payload())
        assert response.status_code == 201
        failing.drain()
    finally:
        failing.shutdown()

    results = failing.deliver(NotificationIntent.from_envelope(events.published_events[-1]))
    assert [(result.channel, result.delivered) for result in results] == [
        ("email", False),
        ("email", False),
        ("whatsapp", False),
    ]
    assert results[0].failure_reason == "smtp unreachable"
    assert results[2].failure_reason == "Whatsapp not configured"


def test_unconfigured_channels_report_without_sending() -> None:
    email_result = asyncio.run(_unconfigured_email().send("a@x.com", "Hello", "Body"))
    assert email_result.delivered is False
    assert email_result.failure_reason == "Email not configured"

    whatsapp = WhatsAppChannel(
        api_url="https://api.twilio.example.com",
        account_sid="AC123",
        auth_token="",
        from_number="+15550000000",
    )
    whatsapp_result = asyncio.run(whatsapp.send("+15551112222", None, "Body"))
    assert whatsapp_result.delivered is False
    assert whatsapp_result.failure_reason == "WhatsApp not configured"


def test_whatsapp_channel_posts_to_messages_endpoint() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(201, json={"sid": "SM123"})

    channel = WhatsAppChannel(
        api_url="https://api.twilio.example.com/2010-04-01/",
        account_sid="AC123",
        auth_token="token",
        from_number="+15550000000",
        transport=httpx.MockTransport(handler),
    )
    result = asyncio.run(channel.send("+15551112222", None, "x" * 2000))

    assert result.delivered is True
    assert result.reference == "SM123"
    request = captured[0]
    assert str(request.url) == "https://api.twilio.example.com/2010-04-01/Accounts/AC123/Messages.json"
    form = parse_qs(request.content.decode())
    assert form["From"] == ["whatsapp:+15550000000"]
    assert form["To"] == ["whatsapp:+15551112222"]
    assert len(form["Body"][0]) == 1600


def test_whatsapp_channel_reports_provider_errors() -> None:
    channel = WhatsAppChannel(
        api_url="https://api.twilio.example.com",
        account_sid="AC123",
        auth_token="token",
        from_number="+15550000000",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"message": "boom"})),
    )
    result = asyncio.run(channel.send("+15551112222", None, "Body"))

    assert result.delivered is False
    assert result.failure_reason == "WhatsApp provider returned HTTP 500"


def test_templates_escape_user_content_and_truncate_previews() -> None:
    consultation = _consultation(name="<script>alert(1)</script>", message="m" * 150)

    admin = render_new_consultation_admin(consultation, brand="Consultdesk", now=NOW)
    assert "<script>" not in admin.html
    assert "&lt;script&gt;" in admin.html
    assert "Organization:</strong> Not specified" in admin.html

    preview = render_new_consultation_whatsapp(consultation)
    assert f"Message: {'m' * 100}..." in preview
    assert "Organization: N/A" in preview


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("contacted", "Our team has reached out to you regarding your request."),
        ("completed", "Your consultation has been completed. Thank you for choosing Consultdesk."),
        ("cancelled", "Your consultation request has been cancelled as per your request."),
        ("on-hold", "Your request status has been updated."),
    ],
)
def test_status_update_message_per_status(status: str, expected: str) -> None:
    rendered = render_status_update(_consultation(status=status), brand="Consultdesk", now=NOW)
    assert expected in rendered.text


def test_celery_queue_hands_intent_to_worker_task(monkeypatch: pytest.MonkeyPatch) -> None:
    queued: list[dict[str, Any]] = []

    class FakeTask:
        def delay(self, payload: dict[str, Any]) -> None:
            queued.append(payload)

    monkeypatch.setattr(tasks, "deliver_notification", FakeTask())
    dispatcher = NotificationDispatcher(
        email=RecordingChannel("email"),
        whatsapp=RecordingChannel("whatsapp"),
        admin_email=ADMIN_INBOX,
        queue="celery",
    )
    try:
        dispatcher.handle_event(
            InternalEvent(
                name=events.CONSULTATION_SUBMITTED,
                payload={
                    "event_type": events.CONSULTATION_SUBMITTED,
                    "correlation_id": "corr-celery-1",
                    "occurred_at": "2026-03-10T12:00:00+00:00",
                    "payload": _consultation(),
                },
            )
        )
    finally:
        dispatcher.shutdown()

    assert len(queued) == 1
    assert NotificationIntent.from_payload(queued[0]).correlation_id == "corr-celery-1"


def test_worker_task_delivers_with_configured_channels() -> None:
    intent = NotificationIntent(
        intent_type=events.CONSULTATION_STATUS_CHANGED,
        consultation=_consultation(status="contacted"),
    )

    results = tasks.deliver_notification(intent.to_payload())

    assert results == [
        {
            "channel": "email",
            "destination": "a@x.com",
            "delivered": False,
            "reference": None,
            "failure_reason": "Email not configured",
        }
    ]


def test_delivery_is_traced() -> None:
    exporter = capture_spans_in_memory()
    exporter.clear()
    dispatcher = NotificationDispatcher(
        email=RecordingChannel("email"),
        whatsapp=RecordingChannel("whatsapp"),
        admin_email=ADMIN_INBOX,
    )
    try:
        dispatcher.deliver(NotificationIntent(intent_type=events.CONSULTATION_SUBMITTED, consultation=_consultation()))
    finally:
        dispatcher.shutdown()

    spans = [span for span in exporter.get_finished_spans() if span.name == "notification.deliver"]
    assert spans
    assert spans[-1].attributes["notification.intent_type"] == events.CONSULTATION_SUBMITTED
