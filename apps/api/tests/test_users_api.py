from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from consultdesk.consultations.models import Consultation
from consultdesk.identity.models import User


def test_list_users_filters_and_paginates(
    client: TestClient,
    create_user: Callable[..., User],
    admin: User,
    partner: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    create_user("carla@x.com", organization="Northwind")
    create_user("dormant@x.com", is_active=False)
    headers = auth_headers(partner)

    everyone = client.get("/api/users", headers=headers).json()["data"]
    assert everyone["pagination"]["total"] == 4
    assert all("password_hash" not in user for user in everyone["users"])

    clients = client.get("/api/users", params={"role": "client"}, headers=headers).json()["data"]
    assert {user["email"] for user in clients["users"]} == {"carla@x.com", "dormant@x.com"}

    inactive = client.get("/api/users", params={"is_active": "false"}, headers=headers).json()["data"]
    assert [user["email"] for user in inactive["users"]] == ["dormant@x.com"]

    searched = client.get("/api/users", params={"search": "northwind"}, headers=headers).json()["data"]
    assert [user["email"] for user in searched["users"]] == ["carla@x.com"]

    paged = client.get("/api/users", params={"limit": 3, "page": 2}, headers=headers).json()["data"]
    assert len(paged["users"]) == 1
    assert paged["pagination"] == {"page": 2, "limit": 3, "total": 4, "pages": 2, "has_more": False}


def test_partners_lists_active_staff_by_name(
    client: TestClient,
    create_user: Callable[..., User],
    admin: User,
    partner: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    create_user("zed@example.com", role="partner", name="Zed Retired", is_active=False)
    create_user("bea@example.com", role="partner", name="Bea Partner")
    create_user("client@x.com")

    response = client.get("/api/users/partners", headers=auth_headers(admin))
    assert response.status_code == 200
    assert [item["name"] for item in response.json()["data"]] == ["Ada Admin", "Bea Partner", "Pat Partner"]
    assert set(response.json()["data"][0]) == {"id", "name", "email", "role", "organization"}


def test_get_user_by_id(
    client: TestClient,
    partner: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    found = client.get(f"/api/users/{partner.id}", headers=auth_headers(partner))
    assert found.status_code == 200
    assert found.json()["data"]["email"] == "partner@example.com"

    missing = client.get(f"/api/users/{uuid.uuid4()}", headers=auth_headers(partner))
    assert missing.status_code == 404
    assert missing.json()["error"] == "User not found"


def test_admin_updates_role_and_status(
    client: TestClient,
    create_user: Callable[..., User],
    admin: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    user = create_user("promote@x.com")

    response = client.put(
        f"/api/users/{user.id}",
        json={"role": "partner", "is_active": False, "organization": "Consultdesk"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["message"] == "User updated successfully"
    data = response.json()["data"]
    assert data["role"] == "partner"
    assert data["is_active"] is False
    assert data["organization"] == "Consultdesk"
    assert data["email"] == "promote@x.com"

    login = client.post("/api/auth/login", json={"email": "promote@x.com", "password": "secret1"})
    assert login.status_code == 403


def test_admin_update_rejects_taken_email(
    client: TestClient,
    create_user: Callable[..., User],
    admin: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    user = create_user("first@x.com")
    create_user("second@x.com")

    conflict = client.put(f"/api/users/{user.id}", json={"email": "Second@X.com"}, headers=auth_headers(admin))
    assert conflict.status_code == 400
    assert conflict.json()["error"] == "Email is already registered"

    same = client.put(f"/api/users/{user.id}", json={"email": "first@x.com"}, headers=auth_headers(admin))
    assert same.status_code == 200


def test_admin_delete_user_clears_assignments(
    client: TestClient,
    db_session: Session,
    submit_consultation: Callable[..., dict[str, Any]],
    admin: User,
    partner: User,
    auth_headers: Callable[..., dict[str, str]],
) -> None:
    receipt = submit_consultation()
    consultation_url = f"/api/consultations/{receipt['request_id']}"
    partner_headers = auth_headers(partner)
    client.patch(f"{consultation_url}/status", json={"assigned_to": str(partner.id)}, headers=auth_headers(admin))
    client.post(f"{consultation_url}/notes", json={"text": "Partner note"}, headers=partner_headers)
    partner_id = partner.id

    deleted = client.delete(f"/api/users/{partner_id}", headers=auth_headers(admin))
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "User deleted successfully"

    detail = client.get(consultation_url, headers=auth_headers(admin)).json()["data"]
    assert detail["assignee"] is None
    assert detail["notes"][0]["text"] == "Partner note"
    assert detail["notes"][0]["author"] is None
    assert db_session.get(Consultation, uuid.UUID(receipt["request_id"])).assigned_to is None

    assert client.get(f"/api/users/{partner_id}", headers=auth_headers(admin)).status_code == 404
