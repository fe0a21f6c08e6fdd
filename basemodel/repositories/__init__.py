"""
Repository Pattern: data access for services.
"""

from .base import BaseRepository

__all__ = ["BaseRepository"]
