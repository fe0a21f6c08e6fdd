"""
Attribute Filler.

Assigns the scalar part of a payload to an entity with partial validation:
only payload keys whose value differs from the entity's current value and
that carry a validation rule are validated, so editing unrelated relations
never re-validates untouched attributes. Unchanged values are never written.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from basemodel_shared.config.logging import get_logger

from basemodel.services.crud.descriptors import ModelRegistry
from basemodel.services.crud.validation import validate_attributes

logger = get_logger(__name__)

_MISSING = object()


def _differs(entity: Any, key: str, value: Any) -> bool:
    return getattr(entity, key, _MISSING) != value


def set_object_attributes(
    entity: Any,
    payload: Mapping[str, Any],
    rules: Mapping[str, Any],
    registry: ModelRegistry,
    check_completion: bool = False,
) -> list[str]:
    """
    Validate and assign the changed attributes of ``payload`` to ``entity``.

    Args:
        entity: Mapped instance being edited.
        payload: Attribute (and relation) values from the request.
        rules: Attribute name -> pydantic annotation.
        registry: Source of the mutable attribute names of the model.
        check_completion: Require every rule to hold a non-empty value, also
            for rule attributes the payload does not mention.

    Returns:
        Names of the attributes that were assigned.

    Raises:
        FieldValidationError: When a validated attribute violates its rule.
    """
    model = type(entity)

    active = {
        key: value
        for key, value in payload.items()
        if key in rules and _differs(entity, key, value)
    }
    if check_completion:
        for key in rules:
            if key not in payload and getattr(entity, key, None) is None:
                active[key] = None

    if rules and active:
        validate_attributes(model.__name__, active, rules, check_completion)

    attributes = set(registry.attributes(model))
    assigned = []
    for key, value in payload.items():
        if key in attributes and _differs(entity, key, value):
            setattr(entity, key, value)
            assigned.append(key)

    if assigned:
        logger.debug("Attributes assigned", model=model.__name__, attributes=assigned)
    return assigned
