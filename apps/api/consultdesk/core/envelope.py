from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.requests import Request

from consultdesk.context import get_correlation_id
from consultdesk.core.errors import FieldError

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    success: bool = True
    message: str | None = None
    data: DataT | None = None


def ok(data: Any = None, message: str | None = None) -> ApiResponse[Any]:
    return ApiResponse[Any](success=True, message=message, data=data)


@dataclass
class ErrorEnvelope:
    error: str
    code: str
    errors: list[dict[str, str]] | None = None
    correlation_id: str | None = None
    path: str | None = None
    stack: str | None = None
    success: bool = field(default=False)


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    errors: list[FieldError] | None = None,
    stack: str | None = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        error=message,
        code=code,
        errors=[{"field": item.field, "message": item.message} for item in errors] if errors else None,
        correlation_id=correlation_id,
        path=request.url.path,
        stack=stack,
    )
    content = {key: value for key, value in asdict(payload).items() if value is not None}
    return JSONResponse(status_code=status_code, content=content)


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_more: bool

    @classmethod
    def build(cls, *, page: int, limit: int, total: int) -> PageMeta:
        pages = (total + limit - 1) // limit if limit else 0
        return cls(page=page, limit=limit, total=total, pages=pages, has_more=page * limit < total)
