from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from consultdesk.consultations.schemas import (
    ConsultationCreate,
    ConsultationPage,
    ConsultationRead,
    ConsultationStatus,
    MyConsultations,
    NoteCreate,
    Priority,
    ServiceType,
    SortField,
    SortOrder,
    StatusUpdate,
    SubmissionReceipt,
)
from consultdesk.consultations.service import RequestOrigin, consultation_service
from consultdesk.core.auth import Identity, get_current_identity, get_optional_identity
from consultdesk.core.database import get_db
from consultdesk.core.envelope import ApiResponse, ok
from consultdesk.core.rbac import require_admin, require_staff
from consultdesk.middleware.request_logging import client_address

router = APIRouter(prefix="/api/consultations", tags=["consultations"])

SUBMITTED_MESSAGE = "Consultation request submitted successfully. We will contact you within 24 hours."


def _request_origin(request: Request) -> RequestOrigin:
    return RequestOrigin(
        ip_address=client_address(request),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
    )


@router.post("", response_model=ApiResponse[SubmissionReceipt], status_code=status.HTTP_201_CREATED)
def submit_consultation(
    request: Request,
    dto: ConsultationCreate,
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
) -> ApiResponse[SubmissionReceipt]:
    receipt = consultation_service.submit(db, dto, origin=_request_origin(request), actor=identity)
    return ok(receipt, SUBMITTED_MESSAGE)


@router.get("", response_model=ApiResponse[ConsultationPage])
def list_consultations(
    status_filter: ConsultationStatus | None = Query(default=None, alias="status"),
    service: ServiceType | None = Query(default=None),
    priority: Priority | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    sort_by: SortField = Query(default="created_at"),
    sort_order: SortOrder = Query(default="desc"),
    db: Session = Depends(get_db),
    _: Identity = Depends(require_staff),
) -> ApiResponse[ConsultationPage]:
    return ok(
        consultation_service.list_consultations(
            db,
            status=status_filter,
            service=service,
            priority=priority,
            search=search,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    )


@router.get("/my/requests", response_model=ApiResponse[MyConsultations])
def my_consultations(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
) -> ApiResponse[MyConsultations]:
    return ok(consultation_service.list_for_email(db, identity.email))


@router.get("/{consultation_id}", response_model=ApiResponse[ConsultationRead])
def get_consultation(
    consultation_id: uuid.UUID,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
) -> ApiResponse[ConsultationRead]:
    return ok(consultation_service.get(db, identity, consultation_id))


@router.patch("/{consultation_id}/status", response_model=ApiResponse[ConsultationRead])
def update_consultation_status(
    consultation_id: uuid.UUID,
    dto: StatusUpdate,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_staff),
) -> ApiResponse[ConsultationRead]:
    return ok(consultation_service.update_status(db, actor, consultation_id, dto), "Status updated successfully")


@router.post("/{consultation_id}/notes", response_model=ApiResponse[ConsultationRead])
def add_consultation_note(
    consultation_id: uuid.UUID,
    dto: NoteCreate,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_staff),
) -> ApiResponse[ConsultationRead]:
    return ok(consultation_service.add_note(db, actor, consultation_id, dto.text), "Note added successfully")


@router.delete("/{consultation_id}", response_model=ApiResponse[None])
def delete_consultation(
    consultation_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_admin),
) -> ApiResponse[None]:
    consultation_service.delete(db, actor, consultation_id)
    return ok(None, "Consultation deleted successfully")
