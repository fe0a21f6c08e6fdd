"""
Relation kinds: the four structural shapes a managed relationship can take.

The kind is derived once from the SQLAlchemy relationship property:

    ToOneOwned      ONETOMANY, uselist=False   (FK on the related row)
    ToOneReference  MANYTOONE                  (FK on the owner row)
    ToManyOwned     ONETOMANY, uselist=True    (FK on each member row)
    ToManyPivoted   MANYTOMANY via secondary   (association table)

Each kind implements associate / clear / detach_member / list_members, so the
reconciler never switches on relationship classes.

Usage:
    kind = relation_kind(Order, "items")
    kind.associate(session, order, item)
    kind.detach_member(session, order, stale_item)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from sqlalchemy import and_, insert, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session
from sqlalchemy.orm.interfaces import MANYTOMANY, MANYTOONE, ONETOMANY

from basemodel_shared.utils.exceptions import InvalidRelationTypeError


# =============================================================================
# Identity helpers
# =============================================================================


@lru_cache(maxsize=None)
def primary_key_name(model: type) -> str:
    """Attribute name of the (single column) primary key."""
    mapper = sa_inspect(model)
    return mapper.get_property_by_column(mapper.primary_key[0]).key


def primary_key_of(entity: Any) -> Any:
    return getattr(entity, primary_key_name(type(entity)), None)


def _column_value(entity: Any, column) -> Any:
    mapper = sa_inspect(entity).mapper
    return getattr(entity, mapper.get_property_by_column(column).key)


# =============================================================================
# Kinds
# =============================================================================


class RelationKind:
    """Base class; one instance per (model, relation)."""

    is_to_many = False

    def __init__(self, model: type, name: str, prop):
        self.model = model
        self.name = name
        self.prop = prop

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.model.__name__}.{self.name}>"

    def current(self, owner: Any) -> Any:
        return getattr(owner, self.name)

    def list_members(self, owner: Any) -> list[Any]:
        value = getattr(owner, self.name)
        if value is None:
            return []
        return list(value) if self.is_to_many else [value]

    def contains(self, owner: Any, entity_id: Any) -> bool:
        return any(primary_key_of(m) == entity_id for m in self.list_members(owner))

    def associate(self, session: Session, owner: Any, related: Any, pivot: dict | None = None) -> None:
        raise NotImplementedError

    def clear(self, session: Session, owner: Any) -> None:
        raise NotImplementedError

    def detach_member(self, session: Session, owner: Any, related: Any) -> None:
        raise NotImplementedError


class ToOneOwned(RelationKind):
    """HasOne: the related row holds the foreign key; clearing deletes it."""

    def associate(self, session, owner, related, pivot=None):
        setattr(owner, self.name, related)
        session.flush()

    def clear(self, session, owner):
        related = getattr(owner, self.name)
        if related is not None:
            session.delete(related)
            session.flush()
            session.expire(owner, [self.name])

    def detach_member(self, session, owner, related):
        if getattr(owner, self.name) is related:
            self.clear(session, owner)


class ToOneReference(RelationKind):
    """BelongsTo: the owner row holds the foreign key; clearing dissociates."""

    def associate(self, session, owner, related, pivot=None):
        setattr(owner, self.name, related)

    def clear(self, session, owner):
        setattr(owner, self.name, None)

    def detach_member(self, session, owner, related):
        if getattr(owner, self.name) is related:
            setattr(owner, self.name, None)


class ToManyOwned(RelationKind):
    """HasMany: each member row holds the foreign key; detaching dissociates it."""

    is_to_many = True

    def associate(self, session, owner, related, pivot=None):
        collection = getattr(owner, self.name)
        if related not in collection:
            collection.append(related)
        session.flush()

    def clear(self, session, owner):
        collection = getattr(owner, self.name)
        for member in list(collection):
            collection.remove(member)
        session.flush()

    def detach_member(self, session, owner, related):
        collection = getattr(owner, self.name)
        if related in collection:
            collection.remove(related)
            session.flush()


class ToManyPivoted(RelationKind):
    """
    BelongsToMany: membership lives in the association table.

    Associating never duplicates a row; pivot attributes are written to the
    association row (inserted or updated).
    """

    is_to_many = True

    def _row_filter(self, owner, related):
        clauses = [
            secondary_col == _column_value(owner, local_col)
            for local_col, secondary_col in self.prop.synchronize_pairs
        ]
        clauses += [
            secondary_col == _column_value(related, remote_col)
            for remote_col, secondary_col in self.prop.secondary_synchronize_pairs
        ]
        return and_(*clauses)

    def _row_values(self, owner, related) -> dict[str, Any]:
        values = {
            secondary_col.key: _column_value(owner, local_col)
            for local_col, secondary_col in self.prop.synchronize_pairs
        }
        values.update({
            secondary_col.key: _column_value(related, remote_col)
            for remote_col, secondary_col in self.prop.secondary_synchronize_pairs
        })
        return values

    def _expire(self, session, owner, related):
        # Membership changed behind the ORM's back; reload both collections
        session.expire(owner, [self.name])
        if self.prop.back_populates:
            session.expire(related, [self.prop.back_populates])

    def pivot_columns(self) -> set[str]:
        keys = {c.key for _, c in self.prop.synchronize_pairs}
        keys |= {c.key for _, c in self.prop.secondary_synchronize_pairs}
        return {c.key for c in self.prop.secondary.columns} - keys

    def associate(self, session, owner, related, pivot=None):
        session.flush()
        table = self.prop.secondary
        values = {k: v for k, v in (pivot or {}).items() if k in self.pivot_columns()}
        condition = self._row_filter(owner, related)

        exists = session.execute(select(1).select_from(table).where(condition)).first()
        if exists is None:
            session.execute(insert(table).values(**self._row_values(owner, related), **values))
        elif values:
            session.execute(update(table).where(condition).values(**values))
        self._expire(session, owner, related)

    def clear(self, session, owner):
        for member in self.list_members(owner):
            self.detach_member(session, owner, member)

    def detach_member(self, session, owner, related):
        session.flush()
        session.execute(self.prop.secondary.delete().where(self._row_filter(owner, related)))
        self._expire(session, owner, related)


@lru_cache(maxsize=None)
def relation_kind(model: type, name: str) -> RelationKind:
    """Derive the RelationKind of ``model.name`` from its mapping."""
    relationships = sa_inspect(model).relationships
    if name not in relationships:
        raise InvalidRelationTypeError(model.__name__, name)
    prop = relationships[name]

    if prop.secondary is not None and prop.direction is MANYTOMANY:
        return ToManyPivoted(model, name, prop)
    if prop.direction is MANYTOONE:
        return ToOneReference(model, name, prop)
    if prop.direction is ONETOMANY:
        if prop.uselist:
            return ToManyOwned(model, name, prop)
        return ToOneOwned(model, name, prop)
    raise InvalidRelationTypeError(model.__name__, name)
