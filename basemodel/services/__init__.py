"""
Services - entity editing, querying and the CRUD facade.
"""

from .base_service import BaseModelService

__all__ = ["BaseModelService"]
