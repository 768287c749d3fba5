from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from consultdesk.consultations.models import Consultation, ConsultationNote
from consultdesk.core.envelope import PageMeta

ServiceType = Literal["strategic", "digital", "market", "organizational", "other"]
ConsultationStatus = Literal["pending", "contacted", "in-progress", "completed", "cancelled"]
Priority = Literal["low", "medium", "high", "urgent"]
SortField = Literal["created_at", "updated_at", "status", "priority", "service", "name"]
SortOrder = Literal["asc", "desc"]

OVERDUE_AFTER = timedelta(hours=48)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_overdue(status: str, created_at: datetime, now: datetime) -> bool:
    return status == "pending" and now - as_utc(created_at) > OVERDUE_AFTER


def days_open(created_at: datetime, now: datetime) -> int:
    elapsed = abs((now - as_utc(created_at)).total_seconds())
    return math.ceil(elapsed / 86400)


class ConsultationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(min_length=1, max_length=32)
    organization: str | None = Field(default=None, max_length=200)
    service: ServiceType
    message: str = Field(min_length=10, max_length=2000)


class StatusUpdate(BaseModel):
    status: ConsultationStatus | None = None
    assigned_to: UUID | None = None
    priority: Priority | None = None


class NoteCreate(BaseModel):
    text: str = Field(default="", max_length=1000)


class RequestMetadata(BaseModel):
    ip_address: str | None = None
    user_agent: str | None = None
    referrer: str | None = None


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: str


class NoteRead(BaseModel):
    id: UUID
    text: str
    author: UserSummary | None
    created_at: datetime

    @classmethod
    def from_model(cls, note: ConsultationNote) -> NoteRead:
        return cls(
            id=note.id,
            text=note.text,
            author=UserSummary.model_validate(note.author) if note.author is not None else None,
            created_at=as_utc(note.created_at),
        )


class ConsultationSummary(BaseModel):
    id: UUID
    name: str
    email: str
    phone: str
    organization: str | None
    service: ServiceType
    message: str
    status: ConsultationStatus
    priority: Priority
    source: str
    assignee: UserSummary | None
    created_at: datetime
    updated_at: datetime
    is_urgent: bool
    is_pending: bool
    is_overdue: bool
    days_open: int

    @classmethod
    def _base_fields(cls, consultation: Consultation, now: datetime) -> dict[str, object]:
        return {
            "id": consultation.id,
            "name": consultation.name,
            "email": consultation.email,
            "phone": consultation.phone,
            "organization": consultation.organization,
            "service": consultation.service,
            "message": consultation.message,
            "status": consultation.status,
            "priority": consultation.priority,
            "source": consultation.source,
            "assignee": UserSummary.model_validate(consultation.assignee) if consultation.assignee else None,
            "created_at": as_utc(consultation.created_at),
            "updated_at": as_utc(consultation.updated_at),
            "is_urgent": consultation.priority == "urgent",
            "is_pending": consultation.status == "pending",
            "is_overdue": is_overdue(consultation.status, consultation.created_at, now),
            "days_open": days_open(consultation.created_at, now),
        }

    @classmethod
    def from_model(cls, consultation: Consultation, now: datetime | None = None) -> ConsultationSummary:
        return cls(**cls._base_fields(consultation, now or datetime.now(timezone.utc)))


class ConsultationRead(ConsultationSummary):
    metadata: RequestMetadata
    notes: list[NoteRead]

    @classmethod
    def from_model(cls, consultation: Consultation, now: datetime | None = None) -> ConsultationRead:
        fields = cls._base_fields(consultation, now or datetime.now(timezone.utc))
        return cls(
            **fields,
            metadata=RequestMetadata(
                ip_address=consultation.ip_address,
                user_agent=consultation.user_agent,
                referrer=consultation.referrer,
            ),
            notes=[NoteRead.from_model(note) for note in consultation.notes],
        )


class SubmissionReceipt(BaseModel):
    request_id: UUID
    name: str
    email: str
    service: ServiceType
    status: ConsultationStatus
    priority: Priority
    source: str
    created_at: datetime


class ConsultationPage(BaseModel):
    consultations: list[ConsultationRead]
    pagination: PageMeta


class MyConsultations(BaseModel):
    count: int
    consultations: list[ConsultationSummary]


class ConsultationStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_service: dict[str, int]
