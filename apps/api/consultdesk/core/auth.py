from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from starlette.requests import Request

from consultdesk.context import bind_actor
from consultdesk.core.config import Settings, get_settings
from consultdesk.core.errors import TokenExpired, TokenInvalid, Unauthenticated
from consultdesk.metrics import observe_auth_failure

ROLE_CLIENT = "client"
ROLE_PARTNER = "partner"
ROLE_ADMIN = "admin"
ROLES = (ROLE_CLIENT, ROLE_PARTNER, ROLE_ADMIN)
STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_PARTNER})


@dataclass(frozen=True, slots=True)
class Identity:
    """Verified caller identity carried by a session token."""

    user_id: str
    email: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class TokenService:
    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        expires_in: timedelta = timedelta(days=7),
        issuer: str,
        audience: str,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._expires_in = expires_in
        self._issuer = issuer
        self._audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            expires_in=timedelta(days=settings.jwt_expire_days),
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )

    def issue(self, *, user_id: str, email: str, role: str, now: datetime | None = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        claims: dict[str, Any] = {
            "sub": user_id,
            "email": email,
            "role": role,
            "iss": self._issuer,
            "aud": self._audience,
            "iat": issued_at,
            "exp": issued_at + self._expires_in,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise TokenInvalid() from exc

        user_id = payload.get("sub")
        email = payload.get("email")
        role = payload.get("role")
        if not isinstance(user_id, str) or not isinstance(email, str) or role not in ROLES:
            raise TokenInvalid()
        return Identity(user_id=user_id, email=email, role=str(role))


def get_token_service() -> TokenService:
    return TokenService.from_settings(get_settings())


def extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return ""
    return auth_header[len("Bearer ") :].strip()


async def get_current_identity(request: Request) -> Identity:
    token = extract_bearer_token(request)
    if not token:
        observe_auth_failure("missing_token")
        raise Unauthenticated("Access token is required. Please provide a valid Bearer token.")

    try:
        identity = get_token_service().verify(token)
    except Unauthenticated as exc:
        observe_auth_failure(exc.code)
        raise
    request.state.user_id = identity.user_id
    bind_actor(identity.user_id)
    return identity


async def get_optional_identity(request: Request) -> Identity | None:
    token = extract_bearer_token(request)
    if not token:
        return None
    try:
        identity = get_token_service().verify(token)
    except Unauthenticated:
        return None
    request.state.user_id = identity.user_id
    bind_actor(identity.user_id)
    return identity
