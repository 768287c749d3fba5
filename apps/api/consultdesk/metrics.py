from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

notification_deliveries_total = Counter(
    "notification_deliveries_total",
    "Notification delivery attempts by channel and outcome",
    ["channel", "outcome"],
)

notification_delivery_duration_seconds = Histogram(
    "notification_delivery_duration_seconds",
    "Notification intent delivery duration in seconds",
    ["intent_type"],
)

rate_limit_rejections_total = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    ["group"],
)

auth_failures_total = Counter(
    "auth_failures_total",
    "Authentication failures by reason",
    ["reason"],
)

consultation_transitions_total = Counter(
    "consultation_transitions_total",
    "Consultation status transitions by target status",
    ["status"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_notification_delivery(channel: str, delivered: bool) -> None:
    notification_deliveries_total.labels(channel=channel, outcome="delivered" if delivered else "failed").inc()


def observe_notification_intent(intent_type: str, duration: float) -> None:
    notification_delivery_duration_seconds.labels(intent_type=intent_type).observe(duration)


def observe_rate_limit_rejection(group: str) -> None:
    rate_limit_rejections_total.labels(group=group).inc()


def observe_auth_failure(reason: str) -> None:
    auth_failures_total.labels(reason=reason).inc()


def observe_consultation_transition(status: str) -> None:
    consultation_transitions_total.labels(status=status).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
