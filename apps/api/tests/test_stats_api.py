from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from fastapi.testclient import TestClient

from consultdesk.identity.models import User
from consultdesk.reporting.service import months_ago


def test_dashboard_overview_and_breakdowns(
    client: TestClient,
    submit_consultation: Callable[..., dict[str, Any]],
    create_user: Callable[..., User],
    admin: User,
    partner: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    create_user("client@x.com")
    receipts = [
        submit_consultation(service="digital"),
        submit_consultation(service="digital"),
        submit_consultation(service="market"),
        submit_consultation(service="strategic"),
    ]
    headers = auth_headers(admin)
    client.patch(
        f"/api/consultations/{receipts[0]['request_id']}/status",
        json={"status": "contacted"},
        headers=headers,
    )
    client.patch(
        f"/api/consultations/{receipts[1]['request_id']}/status",
        json={"status": "in-progress", "priority": "high"},
        headers=headers,
    )

    response = client.get("/api/stats/dashboard", headers=auth_headers(partner))
    assert response.status_code == 200
    stats = response.json()["data"]

    assert stats["overview"] == {
        "total": 4,
        "active": 4,
        "pending": 2,
        "contacted": 1,
        "in_progress": 1,
        "completed": 0,
        "cancelled": 0,
        "overdue": 0,
        "total_users": 3,
    }
    assert stats["by_service"] == [
        {"service": "digital", "count": 2},
        {"service": "market", "count": 1},
        {"service": "strategic", "count": 1},
    ]
    assert stats["by_priority"] == [{"priority": "high", "count": 1}, {"priority": "medium", "count": 3}]
    assert [item["id"] for item in stats["recent_consultations"]] == [
        receipt["request_id"] for receipt in reversed(receipts)
    ]

    now = datetime.now(timezone.utc)
    assert stats["monthly_trend"] == [{"year": now.year, "month": now.month, "count": 4}]


def test_dashboard_active_count_excludes_closed_consultations(
    client: TestClient,
    submit_consultation: Callable[..., dict[str, Any]],
    admin: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    receipts = [submit_consultation() for _ in range(4)]
    headers = auth_headers(admin)
    for receipt, status in zip(receipts, ("completed", "cancelled", "contacted")):
        client.patch(f"/api/consultations/{receipt['request_id']}/status", json={"status": status}, headers=headers)

    overview = client.get("/api/stats/dashboard", headers=headers).json()["data"]["overview"]
    assert overview["total"] == 4
    assert overview["active"] == 2
    assert overview["completed"] == 1
    assert overview["cancelled"] == 1


def test_dashboard_recent_list_is_capped(
    client: TestClient,
    submit_consultation: Callable[..., dict[str, Any]],
    admin: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    for _ in range(7):
        submit_consultation()

    stats = client.get("/api/stats/dashboard", headers=auth_headers(admin)).json()["data"]
    assert stats["overview"]["total"] == 7
    assert len(stats["recent_consultations"]) == 5


def test_user_stats_counts_every_role(
    client: TestClient,
    create_user: Callable[..., User],
    admin: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    create_user("one@x.com")
    create_user("two@x.com")

    response = client.get("/api/stats/users", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["data"] == {"total": 3, "by_role": {"client": 2, "partner": 0, "admin": 1}}


def test_months_ago_clamps_to_month_end() -> None:
    assert months_ago(datetime(2026, 8, 31, tzinfo=timezone.utc), 6) == datetime(2026, 2, 28, tzinfo=timezone.utc)
    assert months_ago(datetime(2026, 3, 15, tzinfo=timezone.utc), 6) == datetime(2025, 9, 15, tzinfo=timezone.utc)
    assert months_ago(datetime(2028, 8, 30, tzinfo=timezone.utc), 6) == datetime(2028, 2, 29, tzinfo=timezone.utc)
