from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from consultdesk.api.routes import router as api_router
from consultdesk.core.config import get_settings
from consultdesk.core.envelope import error_response
from consultdesk.core.errors import AppError, Conflict, FieldError
from consultdesk.core.events import event_bus
from consultdesk.logging import configure_logging
from consultdesk.middleware.correlation_id import CorrelationIdMiddleware
from consultdesk.middleware.rate_limit import RateLimitMiddleware
from consultdesk.middleware.request_logging import RequestLoggingMiddleware
from consultdesk.notifications.dispatcher import (
    INTENT_TYPES,
    build_dispatcher,
    get_dispatcher,
    install_dispatcher,
    on_consultation_event,
)
from consultdesk.otel import configure_tracing, tag_correlation_id


configure_logging()
logger = logging.getLogger("consultdesk.lifecycle")

_HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}
_REQUEST_SECTIONS = {"body", "query", "path", "header"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    owns_dispatcher = get_dispatcher() is None
    if owns_dispatcher:
        install_dispatcher(build_dispatcher())
    for event_name in INTENT_TYPES:
        event_bus.subscribe(event_name, on_consultation_event)
    logger.info("system.started", extra={"reference": get_settings().app_env})
    try:
        yield
    finally:
        for event_name in INTENT_TYPES:
            event_bus.unsubscribe(event_name, on_consultation_event)
        dispatcher = get_dispatcher()
        if owns_dispatcher and dispatcher is not None:
            dispatcher.shutdown()
            install_dispatcher(None)
        logger.info("system.stopped")


settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-correlation-id"],
    expose_headers=["x-correlation-id", "Retry-After"],
)
app.include_router(api_router)


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError):  # type: ignore[no-untyped-def]
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        errors=exc.errors or None,
    )


@app.exception_handler(IntegrityError)
async def handle_integrity_error(request: Request, exc: IntegrityError):  # type: ignore[no-untyped-def]
    logger.warning("db.integrity_error", extra={"path": request.url.path, "error": str(exc.orig)})
    conflict = Conflict(errors=[FieldError(field="email", message="This email is already registered")])
    return error_response(
        request,
        status_code=conflict.status_code,
        code=conflict.code,
        message=conflict.message,
        errors=conflict.errors,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):  # type: ignore[no-untyped-def]
    field_errors: list[FieldError] = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in _REQUEST_SECTIONS]
        field_errors.append(
            FieldError(field=".".join(location) or "request", message=str(error.get("msg", "Invalid value")))
        )
    return error_response(
        request,
        status_code=400,
        code="validation_error",
        message="Validation error",
        errors=field_errors,
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):  # type: ignore[no-untyped-def]
    message = str(exc.detail)
    if exc.status_code == 404 and message == "Not Found":
        message = f"Route not found - {request.url.path}"
    response = error_response(
        request,
        status_code=exc.status_code,
        code=_HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
        message=message,
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):  # type: ignore[no-untyped-def]
    logger.error("http.unhandled_error", exc_info=exc, extra={"path": request.url.path, "error": str(exc)})
    current = get_settings()
    stack = None
    if current.app_debug and not current.is_production:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return error_response(
        request,
        status_code=500,
        code="internal_error",
        message="Internal server error",
        stack=stack,
    )


configure_tracing(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=tag_correlation_id)
