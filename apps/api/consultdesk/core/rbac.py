from collections.abc import Callable

from fastapi import Depends

from consultdesk.core.auth import ROLE_ADMIN, STAFF_ROLES, Identity, get_current_identity
from consultdesk.core.errors import Forbidden
from consultdesk.metrics import observe_auth_failure


def require_roles(*roles: str) -> Callable[[Identity], Identity]:
    allowed = frozenset(roles)

    async def checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in allowed:
            observe_auth_failure("forbidden_role")
            raise Forbidden(f"Access denied. This action requires {' or '.join(sorted(allowed))} role.")
        return identity

    return checker


require_staff = require_roles(*STAFF_ROLES)
require_admin = require_roles(ROLE_ADMIN)


def ensure_owner_or_staff(identity: Identity, owner_email: str) -> None:
    """Staff see everything; anyone else only records filed under their own email."""

    if identity.is_staff:
        return
    if identity.email.strip().lower() != owner_email.strip().lower():
        raise Forbidden("You do not have permission to access this resource")
