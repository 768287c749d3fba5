from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from consultdesk.context import log_context
from consultdesk.core.config import get_settings

# Extra keys allowed into the structured "fields" object; anything else passed
# through ``extra=`` stays out of the output.
_FIELD_NAMES = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "consultation_id",
        "user_id",
        "role",
        "status",
        "intent_type",
        "channel",
        "recipient",
        "reference",
        "reason",
        "group",
        "client_key",
        "error",
    }
)
_MAX_ERROR_LENGTH = 500


class RequestContextFilter(logging.Filter):
    """Stamps records with the correlation id and acting user bound to the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in log_context().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            key: value for key, value in vars(record).items() if key in _FIELD_NAMES and value is not None
        }
        error = fields.get("error")
        if isinstance(error, str) and len(error) > _MAX_ERROR_LENGTH:
            fields["error"] = error[:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        document = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(document, default=str)


def configure_logging(level: str | None = None) -> None:
    """Route the root logger through one JSON handler on stdout. Safe to call repeatedly."""
    root = logging.getLogger()
    if any(isinstance(handler.formatter, JsonLogFormatter) for handler in root.handlers):
        return

    resolved = logging.getLevelName((level or get_settings().log_level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RequestContextFilter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved)
    # Requests are already logged by the request logging middleware.
    logging.getLogger("uvicorn.access").disabled = True
