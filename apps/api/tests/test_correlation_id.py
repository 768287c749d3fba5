from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from fastapi.testclient import TestClient

from consultdesk import events
from consultdesk.identity.models import User


def test_generated_correlation_id_returned_in_header_and_error_envelope(
    client: TestClient,
    admin: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    response = client.get(f"/api/consultations/{uuid.uuid4()}", headers=auth_headers(admin))
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value
    assert body["path"].startswith("/api/consultations/")


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get("/api/auth/me", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 401
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_request_id_header_is_accepted_as_fallback(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-Id": "req-42"})
    assert response.headers.get("x-correlation-id") == "req-42"


def test_malformed_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "not valid; drop table"})
    header_value = response.headers.get("x-correlation-id")
    assert header_value != "not valid; drop table"
    uuid.UUID(header_value)


def test_event_envelope_includes_correlation_id(
    client: TestClient,
    consultation_payload: Callable[..., dict[str, Any]],
) -> None:
    response = client.post(
        "/api/consultations",
        json=consultation_payload(),
        headers={"X-Correlation-Id": "corr-event-1"},
    )
    assert response.status_code == 201

    submitted = [item for item in events.published_events if item["event_type"] == events.CONSULTATION_SUBMITTED]
    assert submitted
    assert submitted[-1]["correlation_id"] == "corr-event-1"


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    response = client.get("/api/nowhere", headers={"X-Correlation-Id": "corr-404"})
    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "Route not found - /api/nowhere",
        "code": "not_found",
        "correlation_id": "corr-404",
        "path": "/api/nowhere",
    }
