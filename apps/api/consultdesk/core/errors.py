from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class FieldError:
    field: str
    message: str


class AppError(Exception):
    """Base error rendered by the API into the uniform response envelope."""

    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, errors: list[FieldError] | None = None) -> None:
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls(message, errors=[FieldError(field=field, message=message)])


class Conflict(AppError):
    status_code = 400
    code = "conflict"
    default_message = "Resource already exists"


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required"


class InvalidCredentials(Unauthenticated):
    code = "invalid_credentials"
    default_message = "Invalid email or password"


class TokenExpired(Unauthenticated):
    code = "token_expired"
    default_message = "Authentication token has expired. Please login again."


class TokenInvalid(Unauthenticated):
    code = "token_invalid"
    default_message = "Invalid authentication token"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Access forbidden"


class AccountDisabled(Forbidden):
    code = "account_disabled"
    default_message = "Your account has been deactivated. Please contact support."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class TransportFailure(AppError):
    status_code = 500
    code = "transport_failure"
    default_message = "Downstream service unavailable"
