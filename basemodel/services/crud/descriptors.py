"""
Relationship Descriptor Model and per-model configuration registry.

Every model managed by the entity editor is registered with an immutable
ModelConfig describing its editable relationships, protected names, defaults,
validation rules and query defaults. The registry is injected into the
editor, the query assembler and the services instead of being looked up on
the model classes.

Usage:
    from basemodel.services.crud.descriptors import ModelConfig, default_registry, to_one, to_many

    default_registry.register(
        Order,
        ModelConfig(
            relationships=[
                to_one("customer", inverse="orders", nullable=False),
                to_many("items", inverse="order"),
                to_many("tags", inverse="orders", pivotable=True),
            ],
            unmodifiable={"created_at"},
            defaults={"status": "new"},
            validation_rules={"status": Literal["new", "paid"]},
        ),
    )

    default_registry.relationships(Order)
    # {"one": {"customer": <...>}, "many": {"items": <...>, "tags": <...>}}
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Select
from sqlalchemy import inspect as sa_inspect

from basemodel_shared.config.constants import Cardinality
from basemodel_shared.config.logging import get_logger
from basemodel_shared.utils.exceptions import MissingRelationConfigurationError

logger = get_logger(__name__)


# =============================================================================
# Descriptors
# =============================================================================


@dataclass(frozen=True)
class EditCondition:
    """``attribute`` must equal ``value`` (currently, or as set by the request)."""

    attribute: str
    value: Any
    operator: str | None = None


# True / False, or OR-groups of AND-ed conditions
EditRule = bool | tuple[tuple[EditCondition, ...], ...]


def _normalize_editable(editable: Any) -> EditRule:
    if isinstance(editable, bool):
        return editable
    groups = []
    for group in editable:
        if isinstance(group, Mapping):
            conditions = tuple(EditCondition(attr, value) for attr, value in group.items())
        elif isinstance(group, EditCondition):
            conditions = (group,)
        else:
            conditions = tuple(
                c if isinstance(c, EditCondition) else EditCondition(**c) for c in group
            )
        groups.append(conditions)
    return tuple(groups)


@dataclass(frozen=True)
class RelationshipDescriptor:
    """
    Static description of one relationship of a model.

    Attributes:
        name: Mapped relationship attribute on the owning model.
        cardinality: Cardinality.ONE or Cardinality.MANY.
        inverse: Name of the reciprocal relationship on the target model.
        target: Target model class or class name; defaults to the mapped target.
        nullable: False marks a required to-one relation.
        editable: True, False, or OR-groups of AND-ed EditConditions. Groups
            may also be given as ``{"attribute": value}`` mappings.
        pivotable: Pass ``pivot`` attributes through to the association table.
    """

    name: str
    cardinality: str
    inverse: str
    target: type | str | None = None
    nullable: bool = True
    editable: EditRule = True
    pivotable: bool = False

    def __post_init__(self):
        if self.cardinality not in Cardinality.ALL:
            raise ValueError(f"Unknown cardinality '{self.cardinality}' for relation '{self.name}'")
        object.__setattr__(self, "editable", _normalize_editable(self.editable))

    @property
    def is_to_one(self) -> bool:
        return self.cardinality == Cardinality.ONE

    @property
    def is_to_many(self) -> bool:
        return self.cardinality == Cardinality.MANY

    @property
    def is_required(self) -> bool:
        # to-many relations are never required
        return self.is_to_one and not self.nullable


def to_one(name: str, inverse: str, **options: Any) -> RelationshipDescriptor:
    return RelationshipDescriptor(name=name, cardinality=Cardinality.ONE, inverse=inverse, **options)


def to_many(name: str, inverse: str, **options: Any) -> RelationshipDescriptor:
    return RelationshipDescriptor(name=name, cardinality=Cardinality.MANY, inverse=inverse, **options)


# =============================================================================
# Model configuration
# =============================================================================


PreparedFilter = Callable[[Select, Any], Select]


@dataclass(frozen=True)
class ModelConfig:
    """
    Immutable configuration of one model.

    Attributes:
        relationships: Declared relationship descriptors.
        unmodifiable: Attribute or relation names excluded from bulk edits.
        defaults: Attribute values applied to new instances.
        validation_rules: Attribute name -> pydantic type/annotation.
        default_sorting: Field -> "asc"/"desc" used when a query has no sorting.
        default_search: Fields searched by the bare ``search`` request key.
        encrypted_fields: Columns stored encrypted (pgcrypto) at rest.
        prepared_filters: Named callables adapting a Select, for ``prepared_filter``.
        track_changes: Record changesets on insert/update/delete.
    """

    relationships: tuple[RelationshipDescriptor, ...] = ()
    unmodifiable: frozenset[str] = frozenset()
    defaults: Mapping[str, Any] = field(default_factory=dict)
    validation_rules: Mapping[str, Any] = field(default_factory=dict)
    default_sorting: Mapping[str, str] = field(default_factory=dict)
    default_search: tuple[str, ...] = ()
    encrypted_fields: frozenset[str] = frozenset()
    prepared_filters: Mapping[str, PreparedFilter] = field(default_factory=dict)
    track_changes: bool = False

    def __post_init__(self):
        object.__setattr__(self, "relationships", tuple(self.relationships))
        object.__setattr__(self, "unmodifiable", frozenset(self.unmodifiable))
        object.__setattr__(self, "default_search", tuple(self.default_search))
        object.__setattr__(self, "encrypted_fields", frozenset(self.encrypted_fields))

        names = [r.name for r in self.relationships]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Relationships declared twice: {sorted(duplicates)}")


_EMPTY_CONFIG = ModelConfig()


# =============================================================================
# Registry
# =============================================================================


class ModelRegistry:
    """
    Registry of ModelConfig per model class.

    Lookups are pure; unknown models and relation names yield empty results.
    """

    def __init__(self):
        self._configs: dict[type, ModelConfig] = {}

    def register(self, model: type, config: ModelConfig | None = None, **options: Any) -> ModelConfig:
        """Register (or replace) the configuration of ``model``."""
        if config is None:
            config = ModelConfig(**options)
        elif options:
            raise TypeError("Pass either a ModelConfig or keyword options, not both")
        self._configs[model] = config
        logger.debug("Model registered", model=model.__name__, relations=len(config.relationships))
        return config

    def configure(self, **options: Any) -> Callable[[type], type]:
        """Class decorator form of :meth:`register`."""

        def decorator(model: type) -> type:
            self.register(model, **options)
            return model

        return decorator

    def models(self) -> list[type]:
        return list(self._configs)

    def is_registered(self, model: type) -> bool:
        return model in self._configs

    def config(self, model: type) -> ModelConfig:
        for klass in model.__mro__:
            if klass in self._configs:
                return self._configs[klass]
        return _EMPTY_CONFIG

    # =========================================================================
    # Relationships
    # =========================================================================

    def relationships(self, model: type) -> dict[str, dict[str, RelationshipDescriptor]]:
        """All declared relationships grouped by cardinality."""
        grouped: dict[str, dict[str, RelationshipDescriptor]] = {
            Cardinality.ONE: {},
            Cardinality.MANY: {},
        }
        for descriptor in self.config(model).relationships:
            grouped[descriptor.cardinality][descriptor.name] = descriptor
        return grouped

    def all_relationships(
        self, model: type, exclude_unmodifiable: bool = True
    ) -> dict[str, dict[str, RelationshipDescriptor]]:
        """Same shape as :meth:`relationships`, optionally without unmodifiable names."""
        grouped = self.relationships(model)
        if exclude_unmodifiable:
            unmodifiable = self.config(model).unmodifiable
            for cardinality in grouped:
                grouped[cardinality] = {
                    name: d for name, d in grouped[cardinality].items() if name not in unmodifiable
                }
        return grouped

    def relationship(
        self, model: type, name: str, exclude_unmodifiable: bool = True
    ) -> RelationshipDescriptor | None:
        for group in self.all_relationships(model, exclude_unmodifiable).values():
            if name in group:
                return group[name]
        return None

    def has_relationship(self, model: type, name: str) -> bool:
        return self.relationship(model, name, exclude_unmodifiable=False) is not None

    def target_of(self, model: type, descriptor: RelationshipDescriptor) -> type:
        """Resolve the target class of ``descriptor``."""
        target = descriptor.target
        if isinstance(target, type):
            return target

        mapper = sa_inspect(model)
        if target is None:
            return mapper.relationships[descriptor.name].mapper.class_

        for candidate in mapper.registry.mappers:
            if candidate.class_.__name__ == target:
                return candidate.class_
        raise LookupError(f"Target model '{target}' of {model.__name__}.{descriptor.name} is not mapped")

    def inverse_of(self, model: type, descriptor: RelationshipDescriptor) -> RelationshipDescriptor:
        """
        Descriptor of the reciprocal relation on the target model.

        Raises MissingRelationConfigurationError when the target does not
        declare ``descriptor.inverse``.
        """
        target = self.target_of(model, descriptor)
        inverse = self.relationship(target, descriptor.inverse, exclude_unmodifiable=False)
        if inverse is None:
            raise MissingRelationConfigurationError(
                model=model.__name__, relation=descriptor.name, target=target.__name__,
            )
        return inverse

    def inverse_violations(self) -> list[str]:
        """
        Describe every declared relation whose inverse is missing or does not
        point back at the declaring model.
        """
        problems = []
        for model, config in self._configs.items():
            for descriptor in config.relationships:
                try:
                    target = self.target_of(model, descriptor)
                except (LookupError, KeyError) as exc:
                    problems.append(f"{model.__name__}.{descriptor.name}: {exc}")
                    continue
                inverse = self.relationship(target, descriptor.inverse, exclude_unmodifiable=False)
                if inverse is None:
                    problems.append(
                        f"{model.__name__}.{descriptor.name}: {target.__name__} has no relation '{descriptor.inverse}'"
                    )
                    continue
                back = self.target_of(target, inverse)
                if not issubclass(model, back) or inverse.inverse != descriptor.name:
                    problems.append(
                        f"{model.__name__}.{descriptor.name}: {target.__name__}.{inverse.name} "
                        f"points to {back.__name__}.{inverse.inverse}"
                    )
        return problems

    # =========================================================================
    # Attributes
    # =========================================================================

    def attributes(self, model: type, exclude_unmodifiable: bool = True) -> list[str]:
        """
        Mutable column attributes of ``model``.

        Primary keys and foreign key columns owned by a declared to-one
        relation are never bulk assigned.
        """
        mapper = sa_inspect(model)
        primary = {c.key for c in mapper.primary_key}
        relation_columns = set()
        for descriptor in self.config(model).relationships:
            if descriptor.name not in mapper.relationships or not descriptor.is_to_one:
                continue
            prop = mapper.relationships[descriptor.name]
            relation_columns.update(c.key for c in prop.local_columns if c.foreign_keys)

        unmodifiable = self.config(model).unmodifiable if exclude_unmodifiable else frozenset()
        names = []
        for attr in mapper.column_attrs:
            column_keys = {c.key for c in attr.columns}
            if column_keys & primary or column_keys & relation_columns:
                continue
            if attr.key in unmodifiable:
                continue
            names.append(attr.key)
        return names

    def validation_rules(self, model: type) -> dict[str, Any]:
        return dict(self.config(model).validation_rules)

    def defaults(self, model: type) -> dict[str, Any]:
        return dict(self.config(model).defaults)

    def new_instance(self, model: type, **values: Any) -> Any:
        """Construct ``model`` with defaults for every attribute not supplied (or supplied empty)."""
        for key, value in self.config(model).defaults.items():
            if values.get(key) in (None, "", [], {}):
                values[key] = value
        return model(**values)


default_registry = ModelRegistry()
