from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from consultdesk.core.auth import Identity, get_current_identity
from consultdesk.core.database import get_db
from consultdesk.core.envelope import ApiResponse, ok
from consultdesk.core.rbac import require_admin, require_staff
from consultdesk.identity.schemas import (
    AdminUserUpdate,
    AuthPayload,
    ChangePasswordRequest,
    LoginRequest,
    PartnerRead,
    ProfileUpdate,
    RegisterRequest,
    UserPage,
    UserRead,
    UserRole,
)
from consultdesk.identity.service import auth_service, user_service

logger = logging.getLogger("consultdesk.identity")

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/users", tags=["users"])


@auth_router.post("/register", response_model=ApiResponse[AuthPayload], status_code=status.HTTP_201_CREATED)
def register(dto: RegisterRequest, db: Session = Depends(get_db)) -> ApiResponse[AuthPayload]:
    return ok(auth_service.register(db, dto), "Registration successful")


@auth_router.post("/login", response_model=ApiResponse[AuthPayload])
def login(dto: LoginRequest, db: Session = Depends(get_db)) -> ApiResponse[AuthPayload]:
    return ok(auth_service.login(db, dto), "Login successful")


@auth_router.get("/me", response_model=ApiResponse[UserRead])
def me(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
) -> ApiResponse[UserRead]:
    return ok(auth_service.me(db, identity))


@auth_router.put("/profile", response_model=ApiResponse[UserRead])
def update_profile(
    dto: ProfileUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
) -> ApiResponse[UserRead]:
    return ok(auth_service.update_profile(db, identity, dto), "Profile updated successfully")


@auth_router.put("/change-password", response_model=ApiResponse[None])
def change_password(
    dto: ChangePasswordRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
) -> ApiResponse[None]:
    auth_service.change_password(db, identity, dto.current_password, dto.new_password)
    return ok(None, "Password changed successfully")


@auth_router.post("/logout", response_model=ApiResponse[None])
def logout(identity: Identity = Depends(get_current_identity)) -> ApiResponse[None]:
    # Tokens are not revocable; the client discards its copy.
    logger.info("auth.logout", extra={"user_id": identity.user_id})
    return ok(None, "Logged out successfully")


@users_router.get("", response_model=ApiResponse[UserPage])
def list_users(
    role: UserRole | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: Identity = Depends(require_staff),
) -> ApiResponse[UserPage]:
    return ok(
        user_service.list_users(db, role=role, is_active=is_active, search=search, page=page, limit=limit)
    )


@users_router.get("/partners", response_model=ApiResponse[list[PartnerRead]])
def list_partners(
    db: Session = Depends(get_db),
    _: Identity = Depends(require_staff),
) -> ApiResponse[list[PartnerRead]]:
    return ok(user_service.list_partners(db))


@users_router.get("/{user_id}", response_model=ApiResponse[UserRead])
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_staff),
) -> ApiResponse[UserRead]:
    return ok(user_service.get_user(db, user_id))


@users_router.put("/{user_id}", response_model=ApiResponse[UserRead])
def update_user(
    user_id: uuid.UUID,
    dto: AdminUserUpdate,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_admin),
) -> ApiResponse[UserRead]:
    return ok(user_service.update_user(db, actor, user_id, dto), "User updated successfully")


@users_router.delete("/{user_id}", response_model=ApiResponse[None])
def delete_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Identity = Depends(require_admin),
) -> ApiResponse[None]:
    user_service.delete_user(db, actor, user_id)
    return ok(None, "User deleted successfully")
