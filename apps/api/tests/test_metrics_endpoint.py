from __future__ import annotations

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from consultdesk.core.config import get_settings
from consultdesk.identity.models import User


def test_metrics_endpoint_hidden_when_disabled(
    client: TestClient,
    admin: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    assert client.get("/metrics", headers=auth_headers(admin)).status_code == 404
    anonymous = client.get("/metrics")
    assert anonymous.status_code == 404
    assert anonymous.json()["code"] == "not_found"


def test_metrics_endpoint_exposes_prometheus_text_to_staff(
    client: TestClient,
    partner: User,
    auth_headers: Callable[..., dict[str, str]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()

    client.get("/api/auth/me")
    response = client.get("/metrics", headers=auth_headers(partner))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'http_requests_total{method="GET",path="/api/auth/me",status="401"}' in response.text
    assert 'auth_failures_total{reason="missing_token"}' in response.text


def test_metrics_endpoint_requires_staff(
    client: TestClient,
    create_user: Callable[..., User],
    auth_headers: Callable[..., dict[str, str]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()

    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers=auth_headers(create_user("viewer@x.com"))).status_code == 403


def test_health_and_index(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    index = client.get("/")
    assert index.json()["endpoints"]["consultations"] == "/api/consultations"
