"""
Query parameters for listing and showing entities.

QueryParameters is the structured input of the QueryAssembler. It can be
built in code or parsed from HTTP query parameters:

    page=2&pagination=25
    include=items,items.product
    sort_field=created_at,name&sort_direction=desc
    search=smith              -> %smith% over the default search fields
    search_start=sm           -> sm%
    search_end=th             -> %th
    not_empty=email,customer.name
    prepared_filter=open_orders
    status=new,paid           -> status = 'new' OR status = 'paid'
    customer.name=Smith       -> Order.customer.has(name == 'Smith')

Filter grammar (``filters`` / ``or_filters`` / ``searches`` / ``or_searches``):
a scalar value means equality (or LIKE), a list means OR of its values, an
integer key nests a group of the opposite kind.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import inspect as sa_inspect

from basemodel_shared.config.settings import settings
from basemodel_shared.utils.exceptions import ValidationError

from basemodel.services.crud.descriptors import ModelRegistry, default_registry

SORT_DIRECTIONS = ("asc", "desc")

# Request keys with a fixed meaning; everything else may be a filter
RESERVED_KEYS = frozenset({
    "page",
    "pagination",
    "include",
    "sort_field",
    "sort_direction",
    "search",
    "search_start",
    "search_end",
    "not_empty",
    "prepared_filter",
    "columns",
})


@dataclass
class QueryParameters:
    """
    Structured list/show query.

    Attributes:
        page: 1-based page number.
        pagination: Requested page size (capped by the assembler).
        includes: Dotted relation paths to eager load.
        sortings: Field -> "asc"/"desc", applied in order.
        filters: AND-ed equality filters.
        or_filters: OR-ed equality filters.
        searches: AND-ed LIKE filters; values carry their own wildcards.
        or_searches: OR-ed LIKE filters.
        not_empty: Fields (or dotted paths) that must be neither NULL nor ''.
        prepared_filters: Names of ModelConfig.prepared_filters to apply.
        columns: Restrict the loaded columns (empty means all).
        decryption_key: Per-request key for encrypted fields.
    """

    page: int = 1
    pagination: int = field(default_factory=lambda: settings.default_pagination)
    includes: list[str] = field(default_factory=list)
    sortings: dict[str, str] = field(default_factory=dict)
    filters: dict[Any, Any] = field(default_factory=dict)
    or_filters: dict[Any, Any] = field(default_factory=dict)
    searches: dict[Any, Any] = field(default_factory=dict)
    or_searches: dict[Any, Any] = field(default_factory=dict)
    not_empty: list[str] = field(default_factory=list)
    prepared_filters: list[str] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    decryption_key: str | None = None

    @classmethod
    def for_model(cls, model: type, registry: ModelRegistry = default_registry, **kwargs: Any) -> QueryParameters:
        """Parameters with the model's default sorting unless sortings are given."""
        params = cls(**kwargs)
        if not params.sortings:
            params.sortings = dict(registry.config(model).default_sorting)
        return params

    @classmethod
    def from_request(
        cls,
        model: type,
        query_params: Mapping[str, Any],
        registry: ModelRegistry = default_registry,
        decryption_key: str | None = None,
    ) -> QueryParameters:
        """
        Parse HTTP query parameters.

        Unknown keys that are neither a column nor a dotted relation path of
        ``model`` are ignored.

        Raises:
            ValidationError: On a malformed page, page size or sort direction.
        """
        params = cls.for_model(model, registry, decryption_key=decryption_key)

        params.page = _positive_int(query_params.get("page"), "page", default=1)
        params.pagination = _positive_int(
            query_params.get("pagination"), "pagination", default=params.pagination
        )
        params.includes = _split(query_params.get("include"))
        params.not_empty = _split(query_params.get("not_empty"))
        params.prepared_filters = _split(query_params.get("prepared_filter"))
        params.columns = _split(query_params.get("columns"))

        sort_fields = _split(query_params.get("sort_field"))
        if sort_fields:
            direction = str(query_params.get("sort_direction") or "asc").lower()
            if direction not in SORT_DIRECTIONS:
                raise ValidationError(f"Invalid sort direction '{direction}'", value=direction)
            params.sortings = {name: direction for name in sort_fields}

        search_fields = registry.config(model).default_search
        for key, pattern in (("search", "%{}%"), ("search_start", "{}%"), ("search_end", "%{}")):
            term = query_params.get(key)
            if term in (None, "") or not search_fields:
                continue
            group = {name: pattern.format(term) for name in search_fields}
            params.searches[len(params.searches)] = group

        for key, value in query_params.items():
            if key in RESERVED_KEYS or not is_filterable(model, key):
                continue
            values = _split(value)
            params.filters[key] = values if len(values) > 1 else (values[0] if values else value)

        return params


def _split(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        items: list[str] = []
        for item in value:
            items.extend(_split(item))
        return items
    return [part.strip() for part in str(value).split(",") if part.strip()]


def _positive_int(value: Any, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{name}' must be an integer", value=value)
    if number < 1:
        raise ValidationError(f"'{name}' must be at least 1", value=value)
    return number


def is_filterable(model: type, path: str) -> bool:
    """True when ``path`` names a column of ``model`` or a dotted relation path to one."""
    mapper = sa_inspect(model)
    head, _, rest = path.partition(".")
    if not rest:
        return head in mapper.column_attrs
    if head not in mapper.relationships:
        return False
    return is_filterable(mapper.relationships[head].mapper.class_, rest)
