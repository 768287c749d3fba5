from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from consultdesk.consultations.models import Consultation, ConsultationNote
from consultdesk.consultations.repository import ConsultationNoteRepository, ConsultationRepository
from consultdesk.core.auth import ROLE_CLIENT, ROLES, STAFF_ROLES, Identity, get_token_service
from consultdesk.core.config import get_settings
from consultdesk.core.envelope import PageMeta
from consultdesk.core.errors import AccountDisabled, Conflict, InvalidCredentials, NotFound, ValidationError
from consultdesk.identity.models import User
from consultdesk.identity.passwords import PasswordService, get_password_service
from consultdesk.identity.repository import UserRepository
from consultdesk.identity.schemas import (
    AdminUserUpdate,
    AuthPayload,
    LoginRequest,
    PartnerRead,
    ProfileUpdate,
    RegisterRequest,
    UserPage,
    UserRead,
)
from consultdesk.metrics import observe_auth_failure

logger = logging.getLogger("consultdesk.identity")

EMAIL_TAKEN_MESSAGE = "Email is already registered"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_password_strength(raw_password: str, field: str = "password") -> None:
    min_length = get_settings().password_min_length
    if len(raw_password) < min_length:
        raise ValidationError.for_field(field, f"Password must be at least {min_length} characters")


def _commit_user(session: Session) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise Conflict(EMAIL_TAKEN_MESSAGE) from exc


class CredentialStore:
    """User records and password checks. Tokens are not issued here."""

    def __init__(self, passwords: PasswordService | None = None) -> None:
        self._passwords = passwords

    @property
    def passwords(self) -> PasswordService:
        return self._passwords or get_password_service()

    def create_user(
        self,
        session: Session,
        *,
        name: str,
        email: str,
        raw_password: str,
        role: str = ROLE_CLIENT,
        organization: str | None = None,
        phone: str | None = None,
        is_active: bool = True,
    ) -> User:
        if role not in ROLES:
            raise ValidationError.for_field("role", f"Role must be one of: {', '.join(ROLES)}")
        _validate_password_strength(raw_password)

        users = UserRepository(session)
        if users.email_taken(email):
            raise Conflict(EMAIL_TAKEN_MESSAGE)

        user = users.insert(
            User(
                name=name.strip(),
                email=email,
                password_hash=self.passwords.hash(raw_password),
                role=role,
                organization=organization or None,
                phone=phone or None,
                is_active=is_active,
            )
        )
        _commit_user(session)
        session.refresh(user)
        return user

    def register(self, session: Session, dto: RegisterRequest) -> User:
        user = self.create_user(
            session,
            name=dto.name,
            email=str(dto.email),
            raw_password=dto.password,
            role=ROLE_CLIENT,
            organization=dto.organization,
            phone=dto.phone,
        )
        logger.info("auth.registered", extra={"user_id": str(user.id)})
        return user

    def authenticate(self, session: Session, email: str, raw_password: str) -> User:
        users = UserRepository(session)
        user = users.find_by_email(email)
        passwords = self.passwords
        if user is None:
            verified = passwords.verify_decoy(raw_password)
        else:
            verified = passwords.verify(user.password_hash, raw_password)
        if user is None or not verified:
            observe_auth_failure("invalid_credentials")
            logger.info("auth.login_failed", extra={"reason": "invalid_credentials"})
            raise InvalidCredentials()

        if not user.is_active:
            observe_auth_failure("account_disabled")
            logger.info("auth.login_failed", extra={"user_id": str(user.id), "reason": "account_disabled"})
            raise AccountDisabled()

        changes: dict[str, object] = {"last_login_at": utcnow()}
        if self.passwords.needs_rehash(user.password_hash):
            changes["password_hash"] = self.passwords.hash(raw_password)
        users.update_fields(user, changes)
        session.commit()
        session.refresh(user)
        logger.info("auth.login", extra={"user_id": str(user.id), "role": user.role})
        return user

    def change_password(self, session: Session, user_id: uuid.UUID, current_raw: str, new_raw: str) -> None:
        users = UserRepository(session)
        user = users.find_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        if not self.passwords.verify(user.password_hash, current_raw):
            observe_auth_failure("wrong_current_password")
            raise InvalidCredentials("Current password is incorrect")
        _validate_password_strength(new_raw, field="new_password")

        users.update_fields(user, {"password_hash": self.passwords.hash(new_raw)})
        session.commit()
        logger.info("auth.password_changed", extra={"user_id": str(user.id)})


class AuthService:
    def __init__(self, credentials: CredentialStore | None = None) -> None:
        self.credentials = credentials or CredentialStore()

    def register(self, session: Session, dto: RegisterRequest) -> AuthPayload:
        user = self.credentials.register(session, dto)
        return self._to_auth_payload(user)

    def login(self, session: Session, dto: LoginRequest) -> AuthPayload:
        user = self.credentials.authenticate(session, str(dto.email), dto.password)
        return self._to_auth_payload(user)

    def me(self, session: Session, identity: Identity) -> UserRead:
        return UserRead.model_validate(self._get_self(session, identity))

    def update_profile(self, session: Session, identity: Identity, dto: ProfileUpdate) -> UserRead:
        user = self._get_self(session, identity)
        changes = dto.model_dump(exclude_unset=True)
        if changes.get("name") is None:
            changes.pop("name", None)
        user = UserRepository(session).update_fields(user, changes)
        session.commit()
        session.refresh(user)
        logger.info("auth.profile_updated", extra={"user_id": str(user.id)})
        return UserRead.model_validate(user)

    def change_password(self, session: Session, identity: Identity, current_raw: str, new_raw: str) -> None:
        self.credentials.change_password(session, _parse_user_id(identity.user_id), current_raw, new_raw)

    def _get_self(self, session: Session, identity: Identity) -> User:
        user = UserRepository(session).find_by_id(_parse_user_id(identity.user_id))
        if user is None:
            raise NotFound("User not found")
        return user

    @staticmethod
    def _to_auth_payload(user: User) -> AuthPayload:
        token = get_token_service().issue(user_id=str(user.id), email=user.email, role=user.role)
        return AuthPayload(user=UserRead.model_validate(user), token=token)


class UserService:
    def list_users(
        self,
        session: Session,
        *,
        role: str | None,
        is_active: bool | None,
        search: str | None,
        page: int,
        limit: int,
    ) -> UserPage:
        users = UserRepository(session)
        criteria = users.search_criteria(role=role, is_active=is_active, search=search)
        total = users.count(*criteria)
        rows = users.find(*criteria, order_by=[User.created_at.desc()], offset=(page - 1) * limit, limit=limit)
        return UserPage(
            users=[UserRead.model_validate(row) for row in rows],
            pagination=PageMeta.build(page=page, limit=limit, total=total),
        )

    def list_partners(self, session: Session) -> list[PartnerRead]:
        rows = UserRepository(session).find(
            User.role.in_(sorted(STAFF_ROLES)),
            User.is_active == True,  # noqa: E712
            order_by=[User.name.asc()],
        )
        return [PartnerRead.model_validate(row) for row in rows]

    def get_user(self, session: Session, user_id: uuid.UUID) -> UserRead:
        return UserRead.model_validate(self._get_or_404(session, user_id))

    def update_user(self, session: Session, actor: Identity, user_id: uuid.UUID, dto: AdminUserUpdate) -> UserRead:
        users = UserRepository(session)
        user = self._get_or_404(session, user_id)

        changes = dto.model_dump(exclude_unset=True)
        for required in ("name", "email", "role", "is_active"):
            if required in changes and changes[required] is None:
                changes.pop(required)
        if "email" in changes:
            changes["email"] = str(changes["email"]).lower()
            if users.email_taken(changes["email"], exclude=user.id):
                raise Conflict(EMAIL_TAKEN_MESSAGE)

        user = users.update_fields(user, changes)
        _commit_user(session)
        session.refresh(user)
        logger.info(
            "users.updated",
            extra={"user_id": str(user.id), "role": user.role, "reference": actor.user_id},
        )
        return UserRead.model_validate(user)

    def delete_user(self, session: Session, actor: Identity, user_id: uuid.UUID) -> None:
        user = self._get_or_404(session, user_id)
        ConsultationRepository(session).bulk_update({"assigned_to": None}, Consultation.assigned_to == user.id)
        ConsultationNoteRepository(session).bulk_update({"author_id": None}, ConsultationNote.author_id == user.id)
        UserRepository(session).delete(user)
        session.commit()
        logger.info("users.deleted", extra={"user_id": str(user_id), "reference": actor.user_id})

    def find_staff(self, session: Session, user_id: uuid.UUID) -> User | None:
        rows = UserRepository(session).find(
            User.id == user_id,
            User.role.in_(sorted(STAFF_ROLES)),
            limit=1,
        )
        return rows[0] if rows else None

    @staticmethod
    def _get_or_404(session: Session, user_id: uuid.UUID) -> User:
        user = UserRepository(session).find_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        return user


def _parse_user_id(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError as exc:
        raise NotFound("User not found") from exc


credential_store = CredentialStore()
auth_service = AuthService(credential_store)
user_service = UserService()
