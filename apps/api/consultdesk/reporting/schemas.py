from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from consultdesk.consultations.schemas import UserSummary


class DashboardOverview(BaseModel):
    total: int
    active: int
    pending: int
    contacted: int
    in_progress: int
    completed: int
    cancelled: int
    overdue: int
    total_users: int


class ServiceCount(BaseModel):
    service: str
    count: int


class PriorityCount(BaseModel):
    priority: str
    count: int


class RecentConsultation(BaseModel):
    id: UUID
    name: str
    email: str
    service: str
    status: str
    assignee: UserSummary | None
    created_at: datetime


class MonthlyCount(BaseModel):
    year: int
    month: int
    count: int


class DashboardStats(BaseModel):
    overview: DashboardOverview
    by_service: list[ServiceCount]
    by_priority: list[PriorityCount]
    recent_consultations: list[RecentConsultation]
    monthly_trend: list[MonthlyCount]


class UserStats(BaseModel):
    total: int
    by_role: dict[str, int]
