from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, or_

from consultdesk.core.repository import BaseRepository
from consultdesk.identity.models import User


class UserRepository(BaseRepository[User]):
    model = User

    def find_by_email(self, email: str) -> User | None:
        matches = self.find(User.email == email.strip().lower(), limit=1)
        return matches[0] if matches else None

    def email_taken(self, email: str, *, exclude: Any = None) -> bool:
        criteria: list[ColumnElement[bool]] = [User.email == email.strip().lower()]
        if exclude is not None:
            criteria.append(User.id != exclude)
        return self.count(*criteria) > 0

    @staticmethod
    def search_criteria(
        *,
        role: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> list[ColumnElement[bool]]:
        criteria: list[ColumnElement[bool]] = []
        if role:
            criteria.append(User.role == role)
        if is_active is not None:
            criteria.append(User.is_active == is_active)
        if search:
            pattern = f"%{search.strip()}%"
            criteria.append(
                or_(
                    User.name.ilike(pattern),
                    User.email.ilike(pattern),
                    User.organization.ilike(pattern),
                )
            )
        return criteria
