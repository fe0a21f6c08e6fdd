"""
SQLAlchemy ORM base for models managed by the entity editor.
"""

from .base import Base, BaseModelMixin

__all__ = ["Base", "BaseModelMixin"]
