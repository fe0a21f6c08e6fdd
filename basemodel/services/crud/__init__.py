"""
CRUD Services - nested create/update of entity graphs.

Provides:
- Relationship descriptors: ModelConfig, ModelRegistry, to_one, to_many
- RelationKind: ToOneOwned, ToOneReference, ToManyOwned, ToManyPivoted
- Attribute Filler: set_object_attributes
- Relation Resolver: resolve_related_entity
- Relation Reconciler: RelationReconciler
- Entity Edit Orchestrator: EntityEditor
- Audit: install_changeset_tracking, Changeset
"""

from .audit import (
    Changeset,
    ChangesetRecorder,
    ChangesetTracker,
    LoggingChangesetRecorder,
    MemoryChangesetRecorder,
    install_changeset_tracking,
)
from .context import EditContext, ParentLink
from .descriptors import (
    EditCondition,
    ModelConfig,
    ModelRegistry,
    RelationshipDescriptor,
    default_registry,
    to_many,
    to_one,
)
from .editor import EntityEditor
from .filler import set_object_attributes
from .reconciler import RelationReconciler
from .relation_kinds import (
    RelationKind,
    ToManyOwned,
    ToManyPivoted,
    ToOneOwned,
    ToOneReference,
    relation_kind,
)
from .resolver import Resolution, resolve_related_entity

__all__ = [
    # Audit
    "Changeset",
    "ChangesetRecorder",
    "ChangesetTracker",
    "LoggingChangesetRecorder",
    "MemoryChangesetRecorder",
    "install_changeset_tracking",
    # Context
    "EditContext",
    "ParentLink",
    # Descriptors
    "EditCondition",
    "ModelConfig",
    "ModelRegistry",
    "RelationshipDescriptor",
    "default_registry",
    "to_many",
    "to_one",
    # Editing
    "EntityEditor",
    "RelationReconciler",
    "Resolution",
    "resolve_related_entity",
    "set_object_attributes",
    # Relation kinds
    "RelationKind",
    "ToManyOwned",
    "ToManyPivoted",
    "ToOneOwned",
    "ToOneReference",
    "relation_kind",
]
