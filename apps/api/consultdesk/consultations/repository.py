from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, or_

from consultdesk.consultations.models import Consultation, ConsultationNote
from consultdesk.core.repository import BaseRepository

SORTABLE_COLUMNS: dict[str, Any] = {
    "created_at": Consultation.created_at,
    "updated_at": Consultation.updated_at,
    "status": Consultation.status,
    "priority": Consultation.priority,
    "service": Consultation.service,
    "name": Consultation.name,
}


class ConsultationRepository(BaseRepository[Consultation]):
    model = Consultation

    @staticmethod
    def search_criteria(
        *,
        status: str | None = None,
        service: str | None = None,
        priority: str | None = None,
        search: str | None = None,
    ) -> list[ColumnElement[bool]]:
        criteria: list[ColumnElement[bool]] = []
        if status:
            criteria.append(Consultation.status == status)
        if service:
            criteria.append(Consultation.service == service)
        if priority:
            criteria.append(Consultation.priority == priority)
        if search:
            pattern = f"%{search.strip()}%"
            criteria.append(
                or_(
                    Consultation.name.ilike(pattern),
                    Consultation.email.ilike(pattern),
                    Consultation.organization.ilike(pattern),
                    Consultation.message.ilike(pattern),
                )
            )
        return criteria

    @staticmethod
    def ordering(sort_by: str, sort_order: str) -> list[Any]:
        column = SORTABLE_COLUMNS.get(sort_by, Consultation.created_at)
        primary = column.asc() if sort_order == "asc" else column.desc()
        if column is Consultation.created_at:
            return [primary]
        return [primary, Consultation.created_at.desc()]

    @staticmethod
    def overdue_criteria(cutoff: datetime) -> list[ColumnElement[bool]]:
        return [Consultation.status == "pending", Consultation.created_at < cutoff]


class ConsultationNoteRepository(BaseRepository[ConsultationNote]):
    model = ConsultationNote
