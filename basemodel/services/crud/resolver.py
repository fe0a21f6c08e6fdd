"""
Relation Resolver.

Finds (or creates) the entity a payload fragment refers to and decides
whether the fragment may edit it through the owning relation.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from basemodel_shared.config.logging import get_logger

from basemodel.services.crud.descriptors import ModelRegistry, RelationshipDescriptor
from basemodel.services.crud.relation_kinds import primary_key_of, relation_kind

logger = get_logger(__name__)


@dataclass
class Resolution:
    """
    Outcome of resolving a fragment.

    Attributes:
        entity: Existing or new related entity.
        is_new: The entity was constructed for this fragment.
        editable: The fragment may mutate the entity.
        assign: The entity is not yet associated through the relation.
        tree: Relations touched by the nested edit, to be loaded afterwards.
    """

    entity: Any
    is_new: bool
    editable: bool
    assign: bool
    tree: dict[str, Any] = field(default_factory=dict)


def is_editable_relationship(
    registry: ModelRegistry,
    descriptor: RelationshipDescriptor,
    related: Any,
    values: Mapping[str, Any],
) -> bool:
    """
    Evaluate the descriptor's ``editable`` rule for ``related``.

    A condition holds when the related entity currently has the value, or
    when the fragment sets the attribute to that value. A group fails on an
    attribute the target does not declare, and on any evaluation error.
    """
    rule = descriptor.editable
    if rule is True:
        return True
    if rule is False or related is None:
        return False

    declared = set(registry.attributes(type(related), exclude_unmodifiable=False))
    for group in rule:
        if not group:
            continue
        try:
            if all(_condition_holds(c, related, values, declared) for c in group):
                return True
        except Exception:
            logger.debug(
                "Editability check failed",
                relation=descriptor.name,
                model=type(related).__name__,
                exc_info=True,
            )
    return False


def _condition_holds(condition, related: Any, values: Mapping[str, Any], declared: set[str]) -> bool:
    if condition.attribute not in declared:
        return False
    if getattr(related, condition.attribute) == condition.value:
        return True
    return condition.attribute in values and values[condition.attribute] == condition.value


def resolve_related_entity(
    session: Session,
    registry: ModelRegistry,
    owner: Any,
    descriptor: RelationshipDescriptor,
    fragment: Mapping[str, Any],
) -> Resolution | None:
    """
    Resolve ``fragment`` against ``owner.<descriptor.name>``.

    Returns None when the fragment neither references an entity nor may
    create an editable one; such fragments are dropped silently.
    """
    model = type(owner)
    target = registry.target_of(model, descriptor)
    kind = relation_kind(model, descriptor.name)

    entity_id = fragment.get("id")
    if entity_id is not None:
        related = session.get(target, entity_id)
        if related is not None:
            if kind.is_to_many:
                assign = not kind.contains(owner, entity_id)
            else:
                current = kind.current(owner)
                assign = current is None or primary_key_of(current) != entity_id
            editable = is_editable_relationship(registry, descriptor, related, fragment)
            return Resolution(related, is_new=False, editable=editable, assign=assign)

    related = registry.new_instance(target)
    if not is_editable_relationship(registry, descriptor, related, fragment):
        logger.debug("Fragment dropped", model=model.__name__, relation=descriptor.name)
        return None
    return Resolution(related, is_new=True, editable=True, assign=True)
