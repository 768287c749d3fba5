from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from consultdesk import events
from consultdesk.consultations.models import Consultation, ConsultationNote
from consultdesk.consultations.repository import ConsultationRepository
from consultdesk.consultations.schemas import (
    OVERDUE_AFTER,
    ConsultationCreate,
    ConsultationPage,
    ConsultationRead,
    ConsultationStats,
    ConsultationSummary,
    MyConsultations,
    StatusUpdate,
    SubmissionReceipt,
    as_utc,
)
from consultdesk.core.auth import Identity
from consultdesk.core.envelope import PageMeta
from consultdesk.core.errors import NotFound, ValidationError
from consultdesk.core.rbac import ensure_owner_or_staff
from consultdesk.identity.service import user_service
from consultdesk.metrics import observe_consultation_transition

logger = logging.getLogger("consultdesk.consultations")

NOTE_MAX_LENGTH = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RequestOrigin:
    ip_address: str | None = None
    user_agent: str | None = None
    referrer: str | None = None


def snapshot(consultation: Consultation) -> dict[str, Any]:
    """Plain payload handed to notification subscribers once the write is committed."""

    return {
        "consultation_id": str(consultation.id),
        "name": consultation.name,
        "email": consultation.email,
        "phone": consultation.phone,
        "organization": consultation.organization,
        "service": consultation.service,
        "message": consultation.message,
        "status": consultation.status,
        "priority": consultation.priority,
        "created_at": as_utc(consultation.created_at).isoformat(),
    }


class ConsultationService:
    def submit(
        self,
        session: Session,
        dto: ConsultationCreate,
        *,
        origin: RequestOrigin,
        actor: Identity | None = None,
    ) -> SubmissionReceipt:
        consultation = ConsultationRepository(session).insert(
            Consultation(
                name=dto.name,
                email=str(dto.email).lower(),
                phone=dto.phone,
                organization=dto.organization or None,
                service=dto.service,
                message=dto.message,
                status="pending",
                priority="medium",
                source="website",
                ip_address=origin.ip_address,
                user_agent=origin.user_agent,
                referrer=origin.referrer,
            )
        )
        session.commit()
        session.refresh(consultation)

        logger.info(
            "consultation.submitted",
            extra={"consultation_id": str(consultation.id), "reference": consultation.service},
        )
        events.publish(
            events.CONSULTATION_SUBMITTED,
            actor_user_id=actor.user_id if actor else None,
            payload=snapshot(consultation),
        )
        return SubmissionReceipt(
            request_id=consultation.id,
            name=consultation.name,
            email=consultation.email,
            service=consultation.service,
            status=consultation.status,
            priority=consultation.priority,
            source=consultation.source,
            created_at=as_utc(consultation.created_at),
        )

    def update_status(
        self,
        session: Session,
        actor: Identity,
        consultation_id: uuid.UUID,
        dto: StatusUpdate,
    ) -> ConsultationRead:
        repository = ConsultationRepository(session)
        consultation = self._get_or_404(repository, consultation_id)

        changes: dict[str, Any] = {}
        if dto.status:
            if dto.status == "pending":
                raise ValidationError.for_field("status", "Status cannot be set back to pending")
            changes["status"] = dto.status
        if dto.priority:
            changes["priority"] = dto.priority
        if "assigned_to" in dto.model_fields_set:
            if dto.assigned_to is not None and user_service.find_staff(session, dto.assigned_to) is None:
                raise ValidationError.for_field("assigned_to", "Assignee must be an existing admin or partner")
            changes["assigned_to"] = dto.assigned_to

        if changes:
            changes["updated_at"] = utcnow()
            consultation = repository.update_fields(consultation, changes)
            session.commit()
            session.refresh(consultation)

        if dto.status:
            observe_consultation_transition(dto.status)
            logger.info(
                "consultation.status_changed",
                extra={"consultation_id": str(consultation.id), "status": dto.status, "user_id": actor.user_id},
            )
            events.publish(
                events.CONSULTATION_STATUS_CHANGED,
                actor_user_id=actor.user_id,
                payload=snapshot(consultation),
            )
        return ConsultationRead.from_model(consultation)

    def add_note(self, session: Session, actor: Identity, consultation_id: uuid.UUID, text: str) -> ConsultationRead:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationError.for_field("text", "Note text is required")
        if len(cleaned) > NOTE_MAX_LENGTH:
            raise ValidationError.for_field("text", f"Note cannot exceed {NOTE_MAX_LENGTH} characters")

        repository = ConsultationRepository(session)
        consultation = self._get_or_404(repository, consultation_id)
        consultation.notes.append(
            ConsultationNote(text=cleaned, author_id=uuid.UUID(actor.user_id), created_at=utcnow())
        )
        consultation = repository.update_fields(consultation, {"updated_at": utcnow()})
        session.commit()
        session.refresh(consultation)
        logger.info("consultation.note_added", extra={"consultation_id": str(consultation.id), "user_id": actor.user_id})
        return ConsultationRead.from_model(consultation)

    def delete(self, session: Session, actor: Identity, consultation_id: uuid.UUID) -> None:
        repository = ConsultationRepository(session)
        consultation = self._get_or_404(repository, consultation_id)
        repository.delete(consultation)
        session.commit()
        logger.info("consultation.deleted", extra={"consultation_id": str(consultation_id), "user_id": actor.user_id})

    def get(self, session: Session, identity: Identity, consultation_id: uuid.UUID) -> ConsultationRead:
        consultation = self._get_or_404(ConsultationRepository(session), consultation_id)
        ensure_owner_or_staff(identity, consultation.email)
        return ConsultationRead.from_model(consultation)

    def list_consultations(
        self,
        session: Session,
        *,
        status: str | None = None,
        service: str | None = None,
        priority: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> ConsultationPage:
        repository = ConsultationRepository(session)
        criteria = repository.search_criteria(status=status, service=service, priority=priority, search=search)
        total = repository.count(*criteria)
        rows = repository.find(
            *criteria,
            order_by=repository.ordering(sort_by, sort_order),
            offset=(page - 1) * limit,
            limit=limit,
        )
        now = utcnow()
        return ConsultationPage(
            consultations=[ConsultationRead.from_model(row, now) for row in rows],
            pagination=PageMeta.build(page=page, limit=limit, total=total),
        )

    def list_for_email(self, session: Session, email: str) -> MyConsultations:
        rows = ConsultationRepository(session).find(
            Consultation.email == email.strip().lower(),
            order_by=[Consultation.created_at.desc()],
        )
        now = utcnow()
        return MyConsultations(
            count=len(rows),
            consultations=[ConsultationSummary.from_model(row, now) for row in rows],
        )

    def by_status(self, session: Session, status: str) -> list[ConsultationSummary]:
        return self._summaries(session, Consultation.status == status)

    def by_service(self, session: Session, service: str) -> list[ConsultationSummary]:
        return self._summaries(session, Consultation.service == service)

    def pending(self, session: Session) -> list[ConsultationSummary]:
        return self.by_status(session, "pending")

    def overdue(self, session: Session, now: datetime | None = None) -> list[ConsultationSummary]:
        current = now or utcnow()
        repository = ConsultationRepository(session)
        rows = repository.find(
            *repository.overdue_criteria(current - OVERDUE_AFTER),
            order_by=[Consultation.created_at.asc()],
        )
        return [ConsultationSummary.from_model(row, current) for row in rows]

    def count_overdue(self, session: Session, now: datetime | None = None) -> int:
        repository = ConsultationRepository(session)
        return repository.count(*repository.overdue_criteria((now or utcnow()) - OVERDUE_AFTER))

    def stats(self, session: Session) -> ConsultationStats:
        repository = ConsultationRepository(session)
        return ConsultationStats(
            total=repository.count(),
            by_status=repository.count_by(Consultation.status),
            by_service=repository.count_by(Consultation.service),
        )

    def _summaries(self, session: Session, *criteria: Any) -> list[ConsultationSummary]:
        rows = ConsultationRepository(session).find(*criteria, order_by=[Consultation.created_at.desc()])
        now = utcnow()
        return [ConsultationSummary.from_model(row, now) for row in rows]

    @staticmethod
    def _get_or_404(repository: ConsultationRepository, consultation_id: uuid.UUID) -> Consultation:
        consultation = repository.find_by_id(consultation_id)
        if consultation is None:
            raise NotFound("Consultation not found")
        return consultation


consultation_service = ConsultationService()
