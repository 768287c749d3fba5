"""Per-request values picked up implicitly by log records and event envelopes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("consultdesk_correlation_id", default=None)
_actor_id: ContextVar[str | None] = ContextVar("consultdesk_actor_id", default=None)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def get_actor_id() -> str | None:
    return _actor_id.get()


def bind_actor(user_id: str | None) -> None:
    """Attach the authenticated caller to whatever runs after it in this context."""
    _actor_id.set(user_id)


@contextmanager
def correlation_scope(correlation_id: str | None) -> Iterator[str | None]:
    """Bind a correlation id for the duration of the block; the actor starts out unset."""
    correlation_token = _correlation_id.set(correlation_id)
    actor_token = _actor_id.set(None)
    try:
        yield correlation_id
    finally:
        _actor_id.reset(actor_token)
        _correlation_id.reset(correlation_token)


def log_context() -> dict[str, str | None]:
    return {"correlation_id": get_correlation_id(), "user_id": get_actor_id()}
