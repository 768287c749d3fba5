from __future__ import annotations

import os
from collections.abc import Callable, Generator
from datetime import datetime
from typing import Any

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT_DISABLED"] = "true"
os.environ["PASSWORD_HASH_TIME_COST"] = "1"
os.environ["PASSWORD_HASH_MEMORY_COST"] = "1024"
os.environ["SMTP_USER"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from consultdesk import events
from consultdesk.core.auth import TokenService
from consultdesk.core.config import get_settings
from consultdesk.core.database import Base, get_db
from consultdesk.identity.models import User
from consultdesk.identity.service import credential_store
from consultdesk.main import app
from consultdesk.middleware.rate_limit import reset_rate_limiter
from consultdesk.notifications.channels import NotificationChannel
from consultdesk.notifications.dispatcher import NotificationDispatcher, install_dispatcher

ADMIN_INBOX = "admin@example.com"
ADMIN_WHATSAPP = "+15550001111"


class RecordingChannel(NotificationChannel):
    """In-memory channel that keeps every message it is asked to deliver."""

    def __init__(self, name: str, *, configured: bool = True, error: Exception | None = None) -> None:
        self.name = name
        self._configured = configured
        self._error = error
        self.sent: list[dict[str, Any]] = []

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def _deliver(self, destination: str, subject: str | None, body: str, html_body: str | None) -> str | None:
        if self._error is not None:
            raise self._error
        self.sent.append({"destination": destination, "subject": subject, "body": body, "html_body": html_body})
        return f"{self.name}-{len(self.sent)}"


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_state() -> Generator[None, None, None]:
    events.published_events.clear()
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    events.published_events.clear()
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def email_channel() -> RecordingChannel:
    return RecordingChannel("email")


@pytest.fixture()
def whatsapp_channel() -> RecordingChannel:
    return RecordingChannel("whatsapp")


@pytest.fixture()
def dispatcher(
    email_channel: RecordingChannel,
    whatsapp_channel: RecordingChannel,
) -> Generator[NotificationDispatcher, None, None]:
    dispatcher = NotificationDispatcher(
        email=email_channel,
        whatsapp=whatsapp_channel,
        admin_email=ADMIN_INBOX,
        admin_whatsapp=ADMIN_WHATSAPP,
        brand="Consultdesk",
        workers=2,
    )
    install_dispatcher(dispatcher)
    yield dispatcher
    dispatcher.shutdown()
    install_dispatcher(None)


@pytest.fixture()
def client(db_session: Session, dispatcher: NotificationDispatcher) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def create_user(db_session: Session) -> Callable[..., User]:
    def factory(
        email: str,
        *,
        role: str = "client",
        name: str | None = None,
        password: str = "secret1",
        is_active: bool = True,
        organization: str | None = None,
    ) -> User:
        return credential_store.create_user(
            db_session,
            name=name or email.split("@")[0].title(),
            email=email,
            raw_password=password,
            role=role,
            organization=organization,
            is_active=is_active,
        )

    return factory


@pytest.fixture()
def auth_headers() -> Callable[..., dict[str, str]]:
    def factory(user: User, *, now: datetime | None = None) -> dict[str, str]:
        token = TokenService.from_settings(get_settings()).issue(
            user_id=str(user.id),
            email=user.email,
            role=user.role,
            now=now,
        )
        return {"Authorization": f"Bearer {token}"}

    return factory


@pytest.fixture()
def admin(create_user: Callable[..., User]) -> User:
    return create_user("admin@example.com", role="admin", name="Ada Admin")


@pytest.fixture()
def partner(create_user: Callable[..., User]) -> User:
    return create_user("partner@example.com", role="partner", name="Pat Partner")


def _consultation_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": "Alice Client",
        "email": "a@x.com",
        "phone": "+15551234567",
        "organization": "Acme Ltd",
        "service": "digital",
        "message": "We need help planning our digital transformation roadmap.",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def consultation_payload() -> Callable[..., dict[str, Any]]:
    return _consultation_payload


@pytest.fixture()
def submit_consultation(client: TestClient) -> Callable[..., dict[str, Any]]:
    def submit(**overrides: Any) -> dict[str, Any]:
        response = client.post("/api/consultations", json=_consultation_payload(**overrides))
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return submit
