"""
Infrastructure module: database sessions and nested transactions.
"""

from basemodel_shared.infrastructure.db import SessionLocal, engine, get_db
from basemodel_shared.infrastructure.transactions import TransactionManager

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "TransactionManager",
]
