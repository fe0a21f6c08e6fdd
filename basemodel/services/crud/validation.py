"""
Attribute validation backed by pydantic.

Validation rules are pydantic annotations keyed by attribute name, e.g.::

    validation_rules = {
        "status": Literal["new", "paid", "cancelled"],
        "email": Annotated[str, StringConstraints(max_length=255, pattern=r".+@.+")],
        "qty": Annotated[int, Field(gt=0)],
    }

Only the attributes handed in are validated. With ``check_completion`` every
rule additionally requires a non-empty value.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import BeforeValidator, ConfigDict, Field, ValidationError, create_model

from basemodel_shared.config.constants import ErrorMessages
from basemodel_shared.utils.exceptions import FieldValidationError


def _require_value(value: Any) -> Any:
    if value is None or value == "" or value == [] or value == {}:
        raise ValueError(ErrorMessages.REQUIRED)
    return value


def _error_messages(exc: ValidationError, aliases: Mapping[str, str]) -> dict[str, list[str]]:
    messages: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = error.get("loc") or ("__root__",)
        name = aliases.get(str(loc[0]), str(loc[0]))
        if error.get("type") == "missing":
            text = ErrorMessages.REQUIRED
        elif error.get("type") == "value_error" and "error" in error.get("ctx", {}):
            text = str(error["ctx"]["error"])
        else:
            text = error.get("msg", "Invalid value")
        messages.setdefault(name, []).append(text)
    return messages


def validate_attributes(
    model_name: str,
    values: Mapping[str, Any],
    rules: Mapping[str, Any],
    check_completion: bool = False,
) -> None:
    """
    Validate ``values`` against the rules of the same keys.

    Raises:
        FieldValidationError: One entry per failing attribute.
    """
    if not values:
        return

    fields: dict[str, Any] = {}
    aliases: dict[str, str] = {}
    for index, name in enumerate(values):
        annotation = rules.get(name, Any)
        if check_completion:
            annotation = Annotated[annotation, BeforeValidator(_require_value)]
        # Internal field names avoid clashes with BaseModel attributes
        internal = f"field_{index}"
        aliases[internal] = name
        aliases[name] = name
        fields[internal] = (annotation, Field(..., alias=name))

    schema = create_model(
        f"{model_name}Attributes",
        __config__=ConfigDict(arbitrary_types_allowed=True),
        **fields,
    )
    try:
        schema.model_validate(dict(values))
    except ValidationError as exc:
        raise FieldValidationError(_error_messages(exc, aliases), model=model_name) from exc
