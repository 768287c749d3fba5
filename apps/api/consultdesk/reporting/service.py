from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import extract, func, select
from sqlalchemy.orm import Session

from consultdesk.consultations.models import STATUSES, Consultation
from consultdesk.consultations.repository import ConsultationRepository
from consultdesk.consultations.schemas import UserSummary, as_utc
from consultdesk.consultations.service import consultation_service
from consultdesk.core.auth import ROLES
from consultdesk.identity.models import User
from consultdesk.identity.repository import UserRepository
from consultdesk.reporting.schemas import (
    DashboardOverview,
    DashboardStats,
    MonthlyCount,
    PriorityCount,
    RecentConsultation,
    ServiceCount,
    UserStats,
)

RECENT_LIMIT = 5
TREND_MONTHS = 6
CLOSED_STATUSES = ("completed", "cancelled")


def months_ago(now: datetime, months: int) -> datetime:
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    # Clamp to the last day of the target month, e.g. Aug 31 minus 6 months is Feb 28/29.
    day = now.day
    while day > 28:
        try:
            return now.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1
    return now.replace(year=year, month=month, day=day)


class ReportingService:
    """Dashboard aggregates.

    Each figure is its own query; figures are not taken from one snapshot,
    so under concurrent writes the per-status counts may not sum to the total.
    """

    def dashboard(self, session: Session, now: datetime | None = None) -> DashboardStats:
        current = now or datetime.now(timezone.utc)
        consultations = ConsultationRepository(session)

        per_status = {status: consultations.count(Consultation.status == status) for status in STATUSES}
        overview = DashboardOverview(
            total=consultations.count(),
            active=consultations.count(Consultation.status.notin_(CLOSED_STATUSES)),
            pending=per_status["pending"],
            contacted=per_status["contacted"],
            in_progress=per_status["in-progress"],
            completed=per_status["completed"],
            cancelled=per_status["cancelled"],
            overdue=consultation_service.count_overdue(session, current),
            total_users=UserRepository(session).count(),
        )

        by_service = sorted(
            consultations.count_by(Consultation.service).items(),
            key=lambda item: (-item[1], item[0]),
        )
        by_priority = consultations.count_by(Consultation.priority)

        recent = consultations.find(order_by=[Consultation.created_at.desc()], limit=RECENT_LIMIT)

        return DashboardStats(
            overview=overview,
            by_service=[ServiceCount(service=service, count=count) for service, count in by_service],
            by_priority=[PriorityCount(priority=priority, count=count) for priority, count in sorted(by_priority.items())],
            recent_consultations=[
                RecentConsultation(
                    id=row.id,
                    name=row.name,
                    email=row.email,
                    service=row.service,
                    status=row.status,
                    assignee=UserSummary.model_validate(row.assignee) if row.assignee else None,
                    created_at=as_utc(row.created_at),
                )
                for row in recent
            ],
            monthly_trend=self._monthly_trend(session, months_ago(current, TREND_MONTHS)),
        )

    def user_stats(self, session: Session) -> UserStats:
        users = UserRepository(session)
        by_role = users.count_by(User.role)
        return UserStats(total=users.count(), by_role={role: by_role.get(role, 0) for role in ROLES})

    @staticmethod
    def _monthly_trend(session: Session, since: datetime) -> list[MonthlyCount]:
        year = extract("year", Consultation.created_at)
        month = extract("month", Consultation.created_at)
        stmt = (
            select(year, month, func.count())
            .where(Consultation.created_at >= since)
            .group_by(year, month)
            .order_by(year, month)
        )
        return [
            MonthlyCount(year=int(row_year), month=int(row_month), count=int(count))
            for row_year, row_month, count in session.execute(stmt).all()
        ]


reporting_service = ReportingService()
