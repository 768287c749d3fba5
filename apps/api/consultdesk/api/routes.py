from fastapi import APIRouter, Depends
from fastapi.responses import Response

from consultdesk.consultations.api import router as consultations_router
from consultdesk.core.auth import Identity
from consultdesk.core.config import get_settings
from consultdesk.core.errors import NotFound
from consultdesk.core.rbac import require_staff
from consultdesk.identity.api import auth_router, users_router
from consultdesk.metrics import generate_metrics_payload, metrics_content_type
from consultdesk.reporting.api import router as stats_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(consultations_router)
router.include_router(users_router)
router.include_router(stats_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
        "version": settings.app_version,
    }


@router.get("/", tags=["system"])
def index() -> dict[str, object]:
    settings = get_settings()
    return {
        "success": True,
        "message": f"{settings.app_name} is running",
        "version": settings.app_version,
        "endpoints": {
            "health": "/health",
            "auth": "/api/auth",
            "consultations": "/api/consultations",
            "users": "/api/users",
            "stats": "/api/stats",
        },
    }


def require_metrics_enabled() -> None:
    if not get_settings().metrics_enabled:
        raise NotFound("Route not found - /metrics")


# Route-level dependencies resolve before parameter ones, so a disabled
# endpoint answers 404 to everyone.
@router.get("/metrics", tags=["system"], dependencies=[Depends(require_metrics_enabled)])
def metrics(_: Identity = Depends(require_staff)) -> Response:
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
