"""
Nested transactions over a SQLAlchemy Session.

One TransactionManager exists per Session (stored in ``session.info``). The
outermost ``begin()`` owns the real transaction; every deeper ``begin()``
opens a SAVEPOINT. ``commit()`` and ``rollback()`` close the innermost level
only, so a failed nested edit can be undone without losing its siblings.

Usage:
    tm = TransactionManager.for_session(db)
    tm.begin()
    try:
        ...
        tm.commit()
    except Exception:
        tm.rollback()
        raise

    with tm.transaction():
        ...
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session, SessionTransaction

from basemodel_shared.config.logging import get_logger
from basemodel_shared.utils.exceptions import TransactionStateError

logger = get_logger(__name__)

_INFO_KEY = "basemodel.transaction_manager"


class TransactionManager:
    """Depth-counting transaction manager; depth never goes below zero."""

    def __init__(self, session: Session):
        self._session = session
        self._savepoints: list[SessionTransaction] = []
        self._depth = 0

    @classmethod
    def for_session(cls, session: Session) -> TransactionManager:
        """Return the manager bound to ``session``, creating it on first use."""
        manager = session.info.get(_INFO_KEY)
        if manager is None:
            manager = cls(session)
            session.info[_INFO_KEY] = manager
        return manager

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def session(self) -> Session:
        return self._session

    def begin(self) -> None:
        if self._depth == 0:
            # Adopt an autobegun transaction instead of failing on begin()
            if not self._session.in_transaction():
                self._session.begin()
            logger.debug("Transaction started")
        else:
            self._savepoints.append(self._session.begin_nested())
            logger.debug("Savepoint created", depth=self._depth + 1)
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            raise TransactionStateError("commit")
        self._depth -= 1
        if self._depth == 0:
            self._session.commit()
            logger.debug("Transaction committed")
        else:
            savepoint = self._savepoints.pop()
            savepoint.commit()
            logger.debug("Savepoint released", depth=self._depth + 1)

    def rollback(self) -> None:
        if self._depth == 0:
            raise TransactionStateError("rollback")
        self._depth -= 1
        if self._depth == 0:
            self._savepoints.clear()
            self._session.rollback()
            logger.debug("Transaction rolled back")
        else:
            savepoint = self._savepoints.pop()
            # A failed flush leaves the savepoint deactivated but still open
            if savepoint.is_active or self._session.get_nested_transaction() is savepoint:
                savepoint.rollback()
            logger.debug("Rolled back to savepoint", depth=self._depth + 1)

    @contextmanager
    def transaction(self) -> Generator[TransactionManager, None, None]:
        """Run a block inside one transaction level."""
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()
