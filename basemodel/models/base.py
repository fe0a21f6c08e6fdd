"""
Base class and mixin for models managed by the entity editor.
"""

from __future__ import annotations

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import DeclarativeBase


class BaseModelMixin:
    """
    Hooks the entity editor calls on every edited entity.

    Methods:
    - validate_attribute_logic(): cross-attribute domain validation, called
      after all relations are reconciled. Raise FieldValidationError or
      BulkValidationError to report problems.
    """

    def validate_attribute_logic(self) -> None:
        """Override in models that need cross-field validation."""

    def __repr__(self) -> str:
        state = sa_inspect(self)
        identity = state.identity[0] if state.identity else "new"
        return f"<{type(self).__name__} {identity}>"


class Base(BaseModelMixin, DeclarativeBase):
    """Base class for all models."""

    pass
