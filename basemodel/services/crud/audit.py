"""
Changeset recording for audited models.

Models whose ModelConfig sets ``track_changes`` emit one Changeset per
inserted, updated or deleted row. The recorder is decoupled from the editor:
SQLAlchemy mapper events collect the changes of those models on flush and
the recorder receives them when the outermost transaction commits. Values
of encrypted fields are never recorded.

Usage:
    tracker = install_changeset_tracking(registry, LoggingChangesetRecorder())
    ...
    tracker.remove()
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session, object_session

from basemodel_shared.config.logging import audit_logger

from basemodel.services.crud.descriptors import ModelRegistry
from basemodel.services.crud.relation_kinds import primary_key_of

ENCRYPTED_PLACEHOLDER = "(encrypted)"


class ChangeAction:
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass
class Changeset:
    """One audited change of one row."""

    action: str
    model: str
    entity_id: Any
    changes: dict[str, dict[str, Any]] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ChangesetRecorder(Protocol):
    def record(self, changeset: Changeset) -> None: ...


class LoggingChangesetRecorder:
    """Writes changesets to the ``basemodel.audit`` logger."""

    def record(self, changeset: Changeset) -> None:
        audit_logger.info(
            f"{changeset.model} {changeset.action}",
            entity_id=changeset.entity_id,
            changes=changeset.changes,
        )


class MemoryChangesetRecorder:
    """Keeps changesets in a list (tests, batch jobs)."""

    def __init__(self):
        self.changesets: list[Changeset] = []

    def record(self, changeset: Changeset) -> None:
        self.changesets.append(changeset)


# =============================================================================
# Change extraction
# =============================================================================


def _column_keys(target: Any) -> list[str]:
    return [attr.key for attr in sa_inspect(target).mapper.column_attrs]


def _mask(key: str, value: Any, encrypted: frozenset[str]) -> Any:
    return ENCRYPTED_PLACEHOLDER if key in encrypted and value is not None else value


def collect_changes(target: Any, action: str, encrypted: frozenset[str] = frozenset()) -> dict[str, dict[str, Any]]:
    """
    Before/after values of the column attributes of ``target``.

    Inserts report every non-null value as ``new``, deletes every value as
    ``old``, updates only the attributes whose history has changes.
    """
    state = sa_inspect(target)
    changes: dict[str, dict[str, Any]] = {}

    for key in _column_keys(target):
        if action == ChangeAction.UPDATED:
            history = state.attrs[key].history
            if not history.has_changes():
                continue
            old = history.deleted[0] if history.deleted else None
            new = history.added[0] if history.added else None
        elif action == ChangeAction.CREATED:
            old, new = None, state.dict.get(key)
            if new is None:
                continue
        else:
            old, new = state.dict.get(key), None

        changes[key] = {"old": _mask(key, old, encrypted), "new": _mask(key, new, encrypted)}
    return changes


# =============================================================================
# Mapper and session events
# =============================================================================

_PENDING_KEY = "basemodel.pending_changesets"


def _current_transaction(session: Session) -> Any:
    return session.get_nested_transaction() or session.get_transaction()


class ChangesetTracker:
    """
    Mapper event listeners feeding one recorder.

    Changesets are buffered per session transaction while rows are flushed.
    A released savepoint hands its buffer to the enclosing transaction, a
    rolled back one drops it, and only the commit of the outermost
    transaction passes the changesets to the recorder.
    """

    _EVENTS = {
        "after_insert": ChangeAction.CREATED,
        "after_update": ChangeAction.UPDATED,
        "after_delete": ChangeAction.DELETED,
    }

    def __init__(self, registry: ModelRegistry, recorder: ChangesetRecorder):
        self.registry = registry
        self.recorder = recorder
        self._listeners: list[tuple[Any, str, Any]] = []

    def install(self) -> ChangesetTracker:
        for model in self.registry.models():
            if not self.registry.config(model).track_changes:
                continue
            for event_name, action in self._EVENTS.items():
                self._listen(model, event_name, self._mapper_listener(action))
        self._listen(Session, "after_commit", self._after_commit)
        self._listen(Session, "after_transaction_end", self._after_transaction_end)
        return self

    def remove(self) -> None:
        for target, event_name, listener in self._listeners:
            if event.contains(target, event_name, listener):
                event.remove(target, event_name, listener)
        self._listeners.clear()

    @property
    def tracked_models(self) -> list[type]:
        return list(dict.fromkeys(
            target for target, _, _ in self._listeners if target is not Session
        ))

    def _listen(self, target: Any, event_name: str, listener: Any) -> None:
        event.listen(target, event_name, listener)
        self._listeners.append((target, event_name, listener))

    def _mapper_listener(self, action: str):
        def listener(mapper, connection, target):
            model = type(target)
            encrypted = self.registry.config(model).encrypted_fields
            changes = collect_changes(target, action, encrypted)
            if action == ChangeAction.UPDATED and not changes:
                return
            changeset = Changeset(
                action=action,
                model=model.__name__,
                entity_id=primary_key_of(target),
                changes=changes,
            )
            session = object_session(target)
            transaction = _current_transaction(session) if session is not None else None
            if transaction is None:
                self.recorder.record(changeset)
                return
            buffers = session.info.setdefault(_PENDING_KEY, {})
            buffers.setdefault(transaction, []).append(changeset)

        return listener

    def _after_commit(self, session: Session) -> None:
        # Fires for savepoint releases too; the committing transaction is
        # still the innermost one here
        buffers = session.info.get(_PENDING_KEY)
        if not buffers:
            return
        transaction = _current_transaction(session)
        pending = buffers.pop(transaction, [])
        if transaction.parent is not None:
            buffers.setdefault(transaction.parent, []).extend(pending)
            return
        for changeset in pending:
            self.recorder.record(changeset)

    def _after_transaction_end(self, session: Session, transaction) -> None:
        # Committed buffers were already moved by _after_commit
        buffers = session.info.get(_PENDING_KEY)
        if buffers:
            buffers.pop(transaction, None)


def install_changeset_tracking(
    registry: ModelRegistry, recorder: ChangesetRecorder | None = None
) -> ChangesetTracker:
    """Start recording changesets of every ``track_changes`` model of ``registry``."""
    return ChangesetTracker(registry, recorder or LoggingChangesetRecorder()).install()
