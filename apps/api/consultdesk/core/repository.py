from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import ColumnElement, Select, func, select, update
from sqlalchemy.orm import Session

from consultdesk.core.database import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Narrow persistence surface shared by the domain services.

    Repositories flush but never commit; the calling service owns the
    transaction boundary.
    """

    model: type[ModelT]

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_id(self, record_id: uuid.UUID) -> ModelT | None:
        return self.session.get(self.model, record_id)

    def find(
        self,
        *criteria: ColumnElement[bool],
        order_by: Sequence[Any] = (),
        offset: int = 0,
        limit: int | None = None,
    ) -> list[ModelT]:
        stmt: Select[tuple[ModelT]] = select(self.model).where(*criteria)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def insert(self, record: ModelT) -> ModelT:
        self.session.add(record)
        self.session.flush()
        self.session.refresh(record)
        return record

    def update_fields(self, record: ModelT, changes: dict[str, Any]) -> ModelT:
        for field_name, value in changes.items():
            setattr(record, field_name, value)
        self.session.flush()
        self.session.refresh(record)
        return record

    def delete(self, record: ModelT) -> None:
        self.session.delete(record)
        self.session.flush()

    def count(self, *criteria: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model).where(*criteria)
        return int(self.session.scalar(stmt) or 0)

    def count_by(self, column: Any, *criteria: ColumnElement[bool]) -> dict[Any, int]:
        stmt = select(column, func.count()).select_from(self.model).where(*criteria).group_by(column)
        return {key: int(total) for key, total in self.session.execute(stmt).all()}

    def bulk_update(self, changes: dict[str, Any], *criteria: ColumnElement[bool]) -> int:
        result = self.session.execute(update(self.model).where(*criteria).values(**changes))
        return int(result.rowcount or 0)
