"""
Relation Reconciler.

Decides, per relation named in a payload, whether to assign, replace or
clear a to-one relation and which members of a to-many relation to add,
keep or detach. Every related fragment is edited through the entity editor
before it is associated, so a whole graph is validated and persisted by one
call.

To-one relation states: absent, reuse-existing, replace-with-new, clear.
To-many relations are synchronised: members the payload does not mention are
detached, unless the relation leads back to the entity being edited.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from basemodel_shared.config.logging import get_logger
from basemodel_shared.infrastructure.transactions import TransactionManager
from basemodel_shared.utils.exceptions import (
    BulkValidationError,
    MissingRelationConfigurationError,
)

from basemodel.services.crud.context import EditContext, LoadTree, ParentLink, merge_load_trees
from basemodel.services.crud.descriptors import ModelRegistry, RelationshipDescriptor
from basemodel.services.crud.relation_kinds import ToOneReference, primary_key_of, relation_kind
from basemodel.services.crud.resolver import Resolution, resolve_related_entity

if TYPE_CHECKING:
    from basemodel.services.crud.editor import EntityEditor

logger = get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_PIVOT_KEY = "pivot"


# =============================================================================
# Payload helpers
# =============================================================================


def snake_case(name: str) -> str:
    """``orderItems`` -> ``order_items``; snake_case names are unchanged."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == 0 or value == [] or value == {}


def _positive_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.isdigit():
        return int(value) or None
    return None


def split_payload(
    registry: ModelRegistry, model: type, payload: Mapping[str, Any]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Split a payload into attribute values and relation values.

    ``x_id`` keys are folded into ``x: {"id": ...}`` when ``x`` is a declared
    relation; a bare ``x`` key always wins. Relation names are matched after
    camelCase -> snake_case normalisation. Unmodifiable relations are dropped.
    """
    attributes: dict[str, Any] = {}
    relations: dict[str, Any] = {}
    folded: dict[str, Any] = {}
    unmodifiable = registry.config(model).unmodifiable

    for key, value in payload.items():
        name = snake_case(key)
        if registry.has_relationship(model, name):
            if name not in unmodifiable:
                relations[name] = value
            continue
        if name.endswith("_id") and registry.has_relationship(model, name[:-3]):
            base = name[:-3]
            if base not in unmodifiable:
                entity_id = _positive_id(value)
                folded[base] = {"id": entity_id} if entity_id is not None else {}
            continue
        attributes[key] = value

    for name, value in folded.items():
        relations.setdefault(name, value)
    return attributes, relations


def as_fragments(value: Any) -> list[Any]:
    """
    Normalise a to-many payload value into a list of fragments.

    A list or tuple is a sequence. A mapping whose first key is an integer
    (or a digit string) is a sequence of its values. Anything else is a
    single fragment.
    """
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, Mapping) and value:
        first = next(iter(value))
        if isinstance(first, int) or (isinstance(first, str) and first.isdigit()):
            return list(value.values())
    return [value]


def as_fragment(value: Any) -> dict[str, Any]:
    """A scalar id becomes ``{"id": id}``; mappings are copied."""
    if isinstance(value, Mapping):
        fragment = dict(value)
        if "id" in fragment and _positive_id(fragment["id"]) is None:
            del fragment["id"]
        elif "id" in fragment:
            fragment["id"] = _positive_id(fragment["id"])
        return fragment
    entity_id = _positive_id(value)
    return {"id": entity_id} if entity_id is not None else {}


# =============================================================================
# Reconciler
# =============================================================================


class RelationReconciler:
    """
    Reconciles the relations of one entity against a payload.

    Built by :class:`~basemodel.services.crud.editor.EntityEditor`; nested
    fragments are edited through the same editor.
    """

    def __init__(self, editor: EntityEditor):
        self._editor = editor

    @property
    def session(self):
        return self._editor.session

    @property
    def registry(self) -> ModelRegistry:
        return self._editor.registry

    # =========================================================================
    # Phases
    # =========================================================================

    def manage_required(
        self,
        entity: Any,
        relations: Mapping[str, Any],
        ctx: EditContext,
        parent: ParentLink | None = None,
    ) -> LoadTree:
        """
        Edit the fragments of every required to-one relation in ``relations``
        and associate them, then link ``entity`` to its parent.

        Associations are made only after every required fragment has been
        edited, so no child flush sees the unsaved owner.
        """
        model = type(entity)
        tree: LoadTree = {}
        pending: list[tuple[RelationshipDescriptor, Resolution]] = []

        for name, value in relations.items():
            descriptor = self.registry.relationship(model, name)
            if descriptor is None or not descriptor.is_required:
                continue
            if parent is not None and name == parent.inverse:
                continue
            if is_empty(value):
                # Surfaces as a NOT NULL violation on save
                continue
            fragment = as_fragment(value)
            resolution = self._edit_fragment(entity, descriptor, fragment, ctx)
            if resolution is None:
                continue
            tree[name] = resolution.tree
            pending.append((descriptor, resolution))

        for descriptor, resolution in pending:
            self._associate(entity, descriptor, resolution, None, ctx)

        if parent is not None:
            self._link_parent(entity, parent)
        return tree

    def manage_optional(
        self,
        entity: Any,
        relations: Mapping[str, Any],
        ctx: EditContext,
        parent: ParentLink | None = None,
    ) -> LoadTree:
        """Reconcile every optional to-one and every to-many relation in ``relations``."""
        model = type(entity)
        tree: LoadTree = {}

        for name, value in relations.items():
            descriptor = self.registry.relationship(model, name)
            if descriptor is None or descriptor.is_required:
                continue
            from_inverse = parent is not None and name == parent.inverse
            kind = relation_kind(model, name)

            if descriptor.is_to_one:
                if from_inverse:
                    self._link_parent(entity, parent)
                    continue
                if is_empty(value):
                    logger.debug("Relation cleared", model=model.__name__, relation=name)
                    kind.clear(self.session, entity)
                    continue
                resolution = self._edit_fragment(entity, descriptor, as_fragment(value), ctx)
                if resolution is not None:
                    self._associate(entity, descriptor, resolution, self._pivot(descriptor, value), ctx)
                    tree[name] = resolution.tree
                continue

            tree[name] = self._sync_many(entity, descriptor, value, ctx, detach=not from_inverse)

        return tree

    # =========================================================================
    # To-many
    # =========================================================================

    def _sync_many(
        self,
        entity: Any,
        descriptor: RelationshipDescriptor,
        value: Any,
        ctx: EditContext,
        detach: bool = True,
    ) -> LoadTree:
        kind = relation_kind(type(entity), descriptor.name)
        managed: set[Any] = set()
        subtree: LoadTree = {}

        fragments = [] if is_empty(value) else as_fragments(value)
        for raw in fragments:
            fragment = as_fragment(raw)
            if not fragment:
                continue
            resolution = self._edit_fragment(entity, descriptor, fragment, ctx)
            if resolution is None:
                continue
            self._associate(entity, descriptor, resolution, self._pivot(descriptor, raw), ctx)
            managed.add(primary_key_of(resolution.entity))
            merge_load_trees(subtree, resolution.tree)

        if detach:
            for member in kind.list_members(entity):
                if primary_key_of(member) not in managed:
                    logger.debug(
                        "Member detached",
                        model=type(entity).__name__,
                        relation=descriptor.name,
                        member_id=primary_key_of(member),
                    )
                    kind.detach_member(self.session, entity, member)
        return subtree

    # =========================================================================
    # Fragments
    # =========================================================================

    def _edit_fragment(
        self,
        owner: Any,
        descriptor: RelationshipDescriptor,
        fragment: dict[str, Any],
        ctx: EditContext,
    ) -> Resolution | None:
        """
        Resolve ``fragment`` and, when editable, edit the related entity.

        Returns None when the fragment is dropped, or when the nested edit
        failed inside its own savepoint (the failure is already in the bag).
        """
        if not fragment:
            return None

        resolution = resolve_related_entity(self.session, self.registry, owner, descriptor, fragment)
        if resolution is None:
            return None

        values = {k: v for k, v in fragment.items() if k != _PIVOT_KEY}
        if resolution.editable and values:
            protected = TransactionManager.for_session(self.session).depth > 0
            try:
                resolution.tree = self._editor._edit(
                    resolution.entity,
                    values,
                    ctx.nested(),
                    check_completion=resolution.is_new,
                    manage_transaction=False,
                    parent=ParentLink(owner, descriptor),
                )
            except BulkValidationError as exc:
                ctx.errors.merge(exc.errors)
                if not protected:
                    raise
                return None
        return resolution

    def _associate(
        self,
        owner: Any,
        descriptor: RelationshipDescriptor,
        resolution: Resolution,
        pivot: dict[str, Any] | None,
        ctx: EditContext,
    ) -> None:
        if not (resolution.assign or pivot):
            return
        try:
            self.registry.inverse_of(type(owner), descriptor)
        except MissingRelationConfigurationError as exc:
            ctx.errors.add(descriptor.name, str(exc))
            return
        relation_kind(type(owner), descriptor.name).associate(
            self.session, owner, resolution.entity, pivot
        )

    def _link_parent(self, entity: Any, parent: ParentLink) -> None:
        """Point ``entity`` back at the parent it is being edited through."""
        name = parent.inverse
        if not self.registry.has_relationship(type(entity), name):
            return
        kind = relation_kind(type(entity), name)
        if isinstance(kind, ToOneReference) and kind.current(entity) is not parent.owner:
            kind.associate(self.session, entity, parent.owner)

    @staticmethod
    def _pivot(descriptor: RelationshipDescriptor, raw: Any) -> dict[str, Any] | None:
        if not descriptor.pivotable or not isinstance(raw, Mapping):
            return None
        pivot = raw.get(_PIVOT_KEY)
        return dict(pivot) if isinstance(pivot, Mapping) else None
