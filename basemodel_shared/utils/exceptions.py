"""
HTTP-aware exceptions raised by the library.

Every exception logs itself on construction and carries an HTTP status, so a
FastAPI application renders it without extra handlers.

Usage:
    from basemodel_shared.utils.exceptions import NotFoundError, BulkValidationError

    raise NotFoundError("Order", order_id)
    raise BulkValidationError(error_bag)
"""

from typing import Any

from fastapi import HTTPException, status

from basemodel_shared.config.constants import ErrorMessages
from basemodel_shared.config.logging import get_logger
from basemodel_shared.utils.error_bag import ErrorBag

logger = get_logger(__name__)


class AppException(HTTPException):
    """Root of the library's exceptions; logs once when constructed."""

    def __init__(
        self,
        status_code: int,
        detail: Any,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        message = detail if isinstance(detail, str) else detail.get("message", type(self).__name__)
        getattr(logger, log_level, logger.warning)(message, status_code=status_code, **log_context)

        super().__init__(status_code=status_code, detail=detail, headers=headers)

    def __str__(self) -> str:
        if isinstance(self.detail, str):
            return self.detail
        return str(self.detail.get("message", self.detail))


# -----------------------------------------------------------------------------
# Lookup (404)
# -----------------------------------------------------------------------------


class NotFoundError(AppException):
    """
    No row with the given primary key (404).

    Usage:
        raise NotFoundError("Order", 123)
    """

    def __init__(self, entity: str, entity_id: int | str | None = None, **log_context: Any):
        if entity_id is not None:
            detail = f"{entity} with id {entity_id} not found"
        else:
            detail = f"{entity} not found"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            log_level="warning",
            entity=entity,
            entity_id=entity_id,
            **log_context,
        )


# -----------------------------------------------------------------------------
# Access (403)
# -----------------------------------------------------------------------------


class ForbiddenError(AppException):
    """
    Authorization error (403).

    Usage:
        raise ForbiddenError("decrypt encrypted fields")
    """

    def __init__(self, action: str | None = None, **log_context: Any):
        if action:
            detail = f"Not allowed to {action}"
        else:
            detail = "Access denied"

        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            log_level="warning",
            action=action,
            **log_context,
        )


# -----------------------------------------------------------------------------
# Request and edit validation (400, 422)
# -----------------------------------------------------------------------------


class ValidationError(AppException):
    """
    Malformed request parameter (400).

    Usage:
        raise ValidationError("Unknown sort direction", value="sideways")
    """

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            log_level="warning",
            **log_context,
        )


class FieldValidationError(AppException):
    """
    One or more attributes failed their validation rules (422).

    ``messages`` maps attribute name to a list of messages.
    """

    def __init__(self, messages: dict[str, list[str]], model: str | None = None, **log_context: Any):
        self.messages = {k: list(v) for k, v in messages.items()}
        self.model = model
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Validation failed", "errors": self.messages},
            log_level="debug",
            model=model,
            fields=sorted(self.messages),
            **log_context,
        )


class BulkValidationError(AppException):
    """
    Aggregated failure of a nested edit (400).

    The only exception that escapes the entity editor. ``errors`` is the
    shared ErrorBag itself, not a copy.
    """

    def __init__(self, errors: ErrorBag, log_level: str = "warning", **log_context: Any):
        self.errors = errors
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": ErrorMessages.BULK_VALIDATION, "errors": errors.to_dict()},
            log_level=log_level,
            error_keys=errors.keys(),
            **log_context,
        )


class RelationNotFoundError(AppException):
    """
    A requested include path does not exist on the model (400).

    Usage:
        raise RelationNotFoundError("items.product", "Order")
    """

    def __init__(self, relation: str, model: str, **log_context: Any):
        self.relation = relation
        self.model = model
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ErrorMessages.RELATION_NOT_FOUND.format(relation=relation, model=model),
            log_level="warning",
            relation=relation,
            model=model,
            **log_context,
        )


# -----------------------------------------------------------------------------
# Configuration and internal state (500)
# -----------------------------------------------------------------------------


class InternalError(AppException):
    """
    Misconfiguration or broken invariant (500).

    Usage:
        raise InternalError("Unexpected relation state", relation="items")
    """

    def __init__(self, detail: str = "Internal server error", **log_context: Any):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            log_level="error",
            **log_context,
        )


class MissingRelationConfigurationError(InternalError):
    """The target model does not declare the inverse of a relation."""

    def __init__(self, model: str, relation: str, target: str, **log_context: Any):
        self.relation = relation
        detail = ErrorMessages.MISSING_RELATION_CONFIG.format(
            relation=relation, model=model, target=target,
        )
        super().__init__(detail, model=model, relation=relation, target=target, **log_context)


class InvalidRelationTypeError(InternalError):
    """A mapped relationship is not one of the supported shapes."""

    def __init__(self, model: str, relation: str, **log_context: Any):
        detail = f"Relation '{relation}' of {model} has an unsupported type"
        super().__init__(detail, model=model, relation=relation, **log_context)


class TransactionStateError(InternalError):
    """Commit or rollback requested with no open transaction."""

    def __init__(self, operation: str, **log_context: Any):
        detail = f"Cannot {operation}: no transaction is open"
        super().__init__(detail, operation=operation, **log_context)
