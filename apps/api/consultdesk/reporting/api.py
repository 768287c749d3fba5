from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from consultdesk.core.auth import Identity
from consultdesk.core.database import get_db
from consultdesk.core.envelope import ApiResponse, ok
from consultdesk.core.rbac import require_admin, require_staff
from consultdesk.reporting.schemas import DashboardStats, UserStats
from consultdesk.reporting.service import reporting_service

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("/dashboard", response_model=ApiResponse[DashboardStats])
def dashboard(db: Session = Depends(get_db), _: Identity = Depends(require_staff)) -> ApiResponse[DashboardStats]:
    return ok(reporting_service.dashboard(db))


@router.get("/users", response_model=ApiResponse[UserStats])
def user_stats(db: Session = Depends(get_db), _: Identity = Depends(require_admin)) -> ApiResponse[UserStats]:
    return ok(reporting_service.user_stats(db))
