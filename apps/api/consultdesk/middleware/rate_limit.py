from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Protocol

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from consultdesk.core.config import Settings, get_settings
from consultdesk.core.envelope import error_response
from consultdesk.metrics import observe_rate_limit_rejection
from consultdesk.middleware.request_logging import client_address

logger = logging.getLogger("consultdesk.rate_limit")


@dataclass(frozen=True)
class WindowDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class RateLimitStore(Protocol):
    def hit(self, key: str, *, limit: int, window_seconds: int, now: float) -> WindowDecision: ...

    def clear(self) -> None: ...


class InMemorySlidingWindowStore:
    """Per-key request timestamps kept for the length of the window.

    Keys whose newest hit has aged out of their window are swept at most once
    per ``sweep_interval_seconds``, so addresses seen once do not accumulate.
    """

    def __init__(self, sweep_interval_seconds: float = 60.0) -> None:
        self._lock = threading.Lock()
        self._hits: dict[str, deque[float]] = {}
        self._windows: dict[str, int] = {}
        self._sweep_interval_seconds = sweep_interval_seconds
        self._last_sweep: float | None = None

    def __len__(self) -> int:
        return len(self._hits)

    def hit(self, key: str, *, limit: int, window_seconds: int, now: float) -> WindowDecision:
        if limit <= 0:
            return WindowDecision(allowed=False, limit=limit, remaining=0, retry_after=window_seconds)

        window_start = now - window_seconds
        with self._lock:
            self._sweep_expired(now)
            hits = self._hits.setdefault(key, deque())
            self._windows[key] = window_seconds
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= limit:
                retry_after = max(1, math.ceil(hits[0] + window_seconds - now))
                return WindowDecision(allowed=False, limit=limit, remaining=0, retry_after=retry_after)

            hits.append(now)
            return WindowDecision(allowed=True, limit=limit, remaining=limit - len(hits), retry_after=0)

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()
            self._windows.clear()
            self._last_sweep = None

    def _sweep_expired(self, now: float) -> None:
        if self._last_sweep is not None and now - self._last_sweep < self._sweep_interval_seconds:
            return
        self._last_sweep = now
        expired = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self._windows[key]]
        for key in expired:
            del self._hits[key]
            del self._windows[key]


@dataclass(frozen=True)
class LimitGroup:
    name: str
    limit: int
    window_seconds: int
    message: str


def _describe_window(window_seconds: int) -> str:
    minutes = max(1, window_seconds // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return "1 hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"


def general_group(settings: Settings) -> LimitGroup:
    window = settings.rate_limit_general_window_seconds
    return LimitGroup(
        name="general",
        limit=settings.rate_limit_general_per_window,
        window_seconds=window,
        message=f"Too many requests from this IP, please try again after {_describe_window(window)}.",
    )


def route_group(method: str, path: str, settings: Settings) -> LimitGroup | None:
    normalized = path.rstrip("/")
    if method == "POST" and normalized in {"/api/auth/login", "/api/auth/register"}:
        window = settings.rate_limit_auth_window_seconds
        return LimitGroup(
            name="auth",
            limit=settings.rate_limit_auth_per_window,
            window_seconds=window,
            message=f"Too many authentication attempts, please try again after {_describe_window(window)}.",
        )
    if method == "POST" and normalized == "/api/consultations":
        window = settings.rate_limit_consultations_window_seconds
        limit = settings.rate_limit_consultations_per_window
        return LimitGroup(
            name="consultations",
            limit=limit,
            window_seconds=window,
            message=f"Too many consultation requests. You can submit up to {limit} requests per {_describe_window(window).removeprefix('1 ')}.",
        )
    return None


_store: RateLimitStore = InMemorySlidingWindowStore()


def set_rate_limit_store(store: RateLimitStore) -> RateLimitStore:
    """Swap the counter backend, returning the one it replaces."""
    global _store
    previous, _store = _store, store
    return previous


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        path = request.url.path
        if settings.rate_limit_disabled or not path.startswith("/api/") or request.method == "OPTIONS":
            return await call_next(request)

        client_key = client_address(request)
        now = time.monotonic()
        groups = [group for group in (route_group(request.method, path, settings), general_group(settings)) if group]

        decision: WindowDecision | None = None
        for group in groups:
            decision = _store.hit(
                f"{group.name}:{client_key}",
                limit=group.limit,
                window_seconds=group.window_seconds,
                now=now,
            )
            if not decision.allowed:
                observe_rate_limit_rejection(group.name)
                logger.warning("rate_limit.rejected", extra={"group": group.name, "client_key": client_key})
                response = error_response(
                    request,
                    status_code=429,
                    code="rate_limited",
                    message=group.message,
                )
                response.headers["Retry-After"] = str(decision.retry_after)
                response.headers["RateLimit-Limit"] = str(decision.limit)
                response.headers["RateLimit-Remaining"] = "0"
                return response

        response = await call_next(request)
        if decision is not None:
            response.headers["RateLimit-Limit"] = str(decision.limit)
            response.headers["RateLimit-Remaining"] = str(decision.remaining)
        return response


def reset_rate_limiter() -> None:
    _store.clear()
