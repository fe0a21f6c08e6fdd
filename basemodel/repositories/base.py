"""
Repository for the reads and deletes the entity editor does not perform.

Usage:
    from basemodel.repositories.base import BaseRepository

    items = BaseRepository(OrderItem, db)
    item = items.find_by_id(42, options=[selectinload(OrderItem.product)])
    if items.exists(42):
        items.delete(item)
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import exists as sql_exists
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from basemodel.models.base import Base
from basemodel.services.crud.relation_kinds import primary_key_name

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Primary-key lookups, listing, counting and deletion for one model."""

    def __init__(self, model: type[ModelT], session: Session):
        self.model = model
        self.session = session

    @property
    def primary_key(self):
        return getattr(self.model, primary_key_name(self.model))

    def _select(self, options: Iterable[Any] | None = None) -> Select:
        stmt = select(self.model)
        return stmt.options(*options) if options else stmt

    def find_by_id(self, entity_id: Any, *, options: Iterable[Any] | None = None) -> ModelT | None:
        """Entity with primary key ``entity_id``, loader ``options`` applied, or None."""
        return self.session.scalar(self._select(options).where(self.primary_key == entity_id))

    def find_all(
        self,
        *,
        options: Iterable[Any] | None = None,
        order_by: Any | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> Sequence[ModelT]:
        stmt = self._select(options)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        return self.session.scalars(stmt.offset(offset).limit(limit)).all()

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(self.model)) or 0

    def exists(self, entity_id: Any) -> bool:
        return bool(self.session.scalar(select(sql_exists().where(self.primary_key == entity_id))))

    def delete(self, entity: ModelT) -> None:
        """Delete and flush; the caller owns the transaction."""
        self.session.delete(entity)
        self.session.flush()
