"""
Query Assembler.

Translates QueryParameters into a SQLAlchemy Select:

    WHERE (not_empty AND filters) OR or_filters
      AND (searches) OR or_searches
    ORDER BY sortings
    LIMIT/OFFSET page

Dotted paths (``customer.name``) become ``has()`` / ``any()`` predicates,
recursively. With a decryption key, encrypted fields are compared through a
FieldDecryptor. Includes are eager loaded with ``selectinload`` chains.

Usage:
    assembler = QueryAssembler(db, registry)
    page = assembler.paginate(Order, QueryParameters.from_request(Order, request.query_params))
    order = assembler.find_extended(Order, 5, QueryParameters(includes=["items.product"]))
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import LargeBinary, String, Text, and_, cast, func, or_, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session, load_only, selectinload
from sqlalchemy.sql import ColumnElement, Select

from basemodel_shared.config.logging import get_logger
from basemodel_shared.config.settings import Settings, settings as default_settings
from basemodel_shared.utils.exceptions import RelationNotFoundError, ValidationError

from basemodel.services.crud.descriptors import ModelRegistry, default_registry
from basemodel.services.crud.reconciler import snake_case
from basemodel.services.crud.relation_kinds import primary_key_name
from basemodel.services.query.parameters import QueryParameters

logger = get_logger(__name__)

Condition = Callable[[ColumnElement, Any], ColumnElement]


# =============================================================================
# Field decryption
# =============================================================================


class FieldDecryptor:
    """
    SQL expression for the plain text of an encrypted column.

    Columns are expected to hold pgcrypto ``pgp_sym_encrypt`` output. Other
    dialects have no server-side decryption; the column is used as stored.
    """

    def __init__(self, dialect_name: str):
        self.dialect_name = dialect_name

    @property
    def supported(self) -> bool:
        return self.dialect_name == "postgresql"

    def expression(self, column: ColumnElement, key: str) -> ColumnElement:
        if not self.supported:
            return column
        return func.pgp_sym_decrypt(cast(column, LargeBinary), key)


# =============================================================================
# Page
# =============================================================================


@dataclass
class Page:
    """One page of results plus the numbers needed to navigate."""

    items: list[Any]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(math.ceil(self.total / self.per_page), 1)

    @property
    def first_item(self) -> int | None:
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + 1

    @property
    def last_item(self) -> int | None:
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + len(self.items)

    def _url(self, base_url: str, page: int) -> str:
        separator = "&" if "?" in base_url else "?"
        return f"{base_url}{separator}page={page}"

    def to_dict(self, base_url: str = "", serializer: Callable[[Any], Any] | None = None) -> dict[str, Any]:
        serialize = serializer or (lambda item: item)
        return {
            "data": [serialize(item) for item in self.items],
            "current_page": self.page,
            "per_page": self.per_page,
            "total": self.total,
            "last_page": self.last_page,
            "from": self.first_item,
            "to": self.last_item,
            "prev_page_url": self._url(base_url, self.page - 1) if self.page > 1 else None,
            "next_page_url": self._url(base_url, self.page + 1) if self.page < self.last_page else None,
        }


def entity_to_dict(entity: Any, includes: Iterable[str] = ()) -> dict[str, Any]:
    """Column values of ``entity`` plus the included relations, recursively."""
    mapper = sa_inspect(entity).mapper
    data = {attr.key: getattr(entity, attr.key) for attr in mapper.column_attrs}

    nested: dict[str, list[str]] = {}
    for path in includes:
        head, _, rest = snake_case(path).partition(".")
        nested.setdefault(head, [])
        if rest:
            nested[head].append(rest)

    for name, sub_includes in nested.items():
        if name not in mapper.relationships:
            continue
        value = getattr(entity, name)
        if value is None:
            data[name] = None
        elif mapper.relationships[name].uselist:
            data[name] = [entity_to_dict(member, sub_includes) for member in value]
        else:
            data[name] = entity_to_dict(value, sub_includes)
    return data


# =============================================================================
# Assembler
# =============================================================================


class QueryAssembler:
    """Builds and runs list/show queries for registered models."""

    def __init__(
        self,
        session: Session,
        registry: ModelRegistry = default_registry,
        settings: Settings = default_settings,
    ):
        self.session = session
        self.registry = registry
        self.settings = settings
        self.decryptor = FieldDecryptor(session.get_bind().dialect.name)

    @property
    def dialect_name(self) -> str:
        return self.decryptor.dialect_name

    # =========================================================================
    # Public API
    # =========================================================================

    def paginate(self, model: type, params: QueryParameters | None = None) -> Page:
        """
        Filtered, searched, sorted and paginated entities of ``model``.

        The page size is capped at ``settings.max_pagination``.
        """
        if params is None:
            params = QueryParameters.for_model(model, self.registry)

        stmt = self.build_select(model, params)
        total = self.session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0

        per_page = min(params.pagination, self.settings.max_pagination)
        page = max(params.page, 1)
        stmt = stmt.offset((page - 1) * per_page).limit(per_page)
        stmt = self._apply_includes(model, stmt, params.includes)

        items = list(self.session.scalars(stmt).unique())
        logger.debug("Page loaded", model=model.__name__, page=page, per_page=per_page, total=total)
        return Page(items=items, total=total, page=page, per_page=per_page)

    def find_extended(self, model: type, entity_id: Any, params: QueryParameters | None = None) -> Any | None:
        """
        One entity of ``model`` by id, with includes and AND filters applied.

        Raises:
            RelationNotFoundError: An include path is not a relation.
        """
        params = params or QueryParameters()
        pk = getattr(model, primary_key_name(model))

        stmt = select(model).where(pk == entity_id)
        if params.filters:
            stmt = stmt.where(self._and_filters(model, params.filters, params.decryption_key))
        stmt = self._apply_columns(model, stmt, params.columns)
        stmt = self._apply_includes(model, stmt, params.includes)
        return self.session.scalars(stmt).unique().first()

    def build_select(self, model: type, params: QueryParameters) -> Select:
        """Select with every clause of ``params`` except pagination and includes."""
        stmt = select(model)
        stmt = self._apply_prepared_filters(model, stmt, params)

        key = params.decryption_key
        filter_clause = self._combine(
            self._and_terms([
                self._not_empty(model, params.not_empty),
                self._and_filters(model, params.filters, key),
            ]),
            self._or_filters(model, params.or_filters, key),
        )
        search_clause = self._combine(
            self._and_searches(model, params.searches, key),
            self._or_searches(model, params.or_searches, key),
        )
        for clause in (filter_clause, search_clause):
            if clause is not None:
                stmt = stmt.where(clause)

        stmt = self._apply_sortings(model, stmt, params.sortings, key)
        return self._apply_columns(model, stmt, params.columns)

    # =========================================================================
    # Clause combination
    # =========================================================================

    @staticmethod
    def _and_terms(terms: Iterable[ColumnElement | None]) -> ColumnElement | None:
        present = [t for t in terms if t is not None]
        if not present:
            return None
        return present[0] if len(present) == 1 else and_(*present)

    @staticmethod
    def _or_terms(terms: Iterable[ColumnElement | None]) -> ColumnElement | None:
        present = [t for t in terms if t is not None]
        if not present:
            return None
        return present[0] if len(present) == 1 else or_(*present)

    def _combine(self, and_clause: ColumnElement | None, or_clause: ColumnElement | None) -> ColumnElement | None:
        return self._or_terms([and_clause, or_clause])

    # =========================================================================
    # Filters and searches
    # =========================================================================

    def _and_filters(self, model, filters: Mapping[Any, Any], key: str | None) -> ColumnElement | None:
        return self._and_terms(
            self._or_filters(model, value, key) if isinstance(name, int)
            else self._term(model, name, value, self._equals, key)
            for name, value in filters.items()
        )

    def _or_filters(self, model, filters: Mapping[Any, Any], key: str | None) -> ColumnElement | None:
        return self._or_terms(
            self._and_filters(model, value, key) if isinstance(name, int)
            else self._term(model, name, value, self._equals, key)
            for name, value in filters.items()
        )

    def _and_searches(self, model, searches: Mapping[Any, Any], key: str | None) -> ColumnElement | None:
        return self._and_terms(
            self._or_searches(model, value, key) if isinstance(name, int)
            else self._term(model, name, value, self._like, key)
            for name, value in searches.items()
        )

    def _or_searches(self, model, searches: Mapping[Any, Any], key: str | None) -> ColumnElement | None:
        return self._or_terms(
            self._and_searches(model, value, key) if isinstance(name, int)
            else self._term(model, name, value, self._like, key)
            for name, value in searches.items()
        )

    def _not_empty(self, model, paths: Iterable[str]) -> ColumnElement | None:
        return self._and_terms(
            self._path_predicate(model, path.split("."), lambda column: self._is_not_empty(column))
            for path in paths
        )

    def _term(self, model, path: str, value: Any, condition: Condition, key: str | None) -> ColumnElement:
        """One filter/search term; a list value is an OR of its values."""
        values = list(value) if isinstance(value, (list, tuple, set)) else [value]

        def leaf(column, target):
            if key and path.split(".")[-1] in self.registry.config(target).encrypted_fields:
                column = self.decryptor.expression(column, key)
            return self._or_terms(condition(column, v) for v in values)

        return self._path_predicate(model, path.split("."), leaf, pass_target=True)

    def _path_predicate(self, model, parts: list[str], leaf, pass_target: bool = False) -> ColumnElement:
        """
        Predicate on ``model`` for a (dotted) attribute path.

        Relation hops turn into ``has()`` for to-one and ``any()`` for
        to-many relations.
        """
        mapper = sa_inspect(model)
        head, rest = parts[0], parts[1:]
        if not rest:
            if head not in mapper.column_attrs:
                raise ValidationError(f"Unknown field '{head}' on {model.__name__}", field=head)
            column = getattr(model, head)
            return leaf(column, model) if pass_target else leaf(column)

        if head not in mapper.relationships:
            raise RelationNotFoundError(".".join(parts), model.__name__)
        prop = mapper.relationships[head]
        inner = self._path_predicate(prop.mapper.class_, rest, leaf, pass_target)
        relation = getattr(model, head)
        return relation.any(inner) if prop.uselist else relation.has(inner)

    def _equals(self, column, value):
        return column.is_(None) if value is None else column == value

    def _like(self, column, value):
        if self.dialect_name == "postgresql":
            return cast(column, Text).ilike(value)
        return column.like(value)

    @staticmethod
    def _is_not_empty(column):
        if isinstance(column.type, String):
            return and_(column.isnot(None), column != "")
        return column.isnot(None)

    # =========================================================================
    # Prepared filters, sorting, columns, includes
    # =========================================================================

    def _apply_prepared_filters(self, model, stmt: Select, params: QueryParameters) -> Select:
        prepared = self.registry.config(model).prepared_filters
        for name in params.prepared_filters:
            if name not in prepared:
                raise ValidationError(f"Unknown prepared filter '{name}'", model=model.__name__)
            stmt = prepared[name](stmt, params)
        return stmt

    def _apply_sortings(self, model, stmt: Select, sortings: Mapping[str, str], key: str | None) -> Select:
        mapper = sa_inspect(model)
        encrypted = self.registry.config(model).encrypted_fields
        for name, direction in sortings.items():
            if name not in mapper.column_attrs:
                logger.warning("Unknown sort field skipped", model=model.__name__, field=name)
                continue
            column = getattr(model, name)
            if key and name in encrypted:
                column = self.decryptor.expression(column, key)
            stmt = stmt.order_by(column.desc() if str(direction).lower() == "desc" else column.asc())
        return stmt

    def _apply_columns(self, model, stmt: Select, columns: Iterable[str]) -> Select:
        mapper = sa_inspect(model)
        attributes = [getattr(model, name) for name in columns if name in mapper.column_attrs]
        if attributes:
            stmt = stmt.options(load_only(*attributes))
        return stmt

    def _apply_includes(self, model, stmt: Select, includes: Iterable[str]) -> Select:
        return stmt.options(*self.include_options(model, includes)) if includes else stmt

    def include_options(self, model: type, includes: Iterable[str]) -> list[Any]:
        """
        ``selectinload`` chains for dotted include paths.

        Raises:
            RelationNotFoundError: A path segment is not a relation.
        """
        options = []
        for include in includes:
            path = snake_case(include)
            current = model
            option = None
            for name in path.split("."):
                relationships = sa_inspect(current).relationships
                if name not in relationships:
                    raise RelationNotFoundError(path, model.__name__)
                attribute = getattr(current, name)
                option = selectinload(attribute) if option is None else option.selectinload(attribute)
                current = relationships[name].mapper.class_
            if option is not None:
                options.append(option)
        return options
