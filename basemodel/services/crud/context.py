"""
Shared state of one top-level edit.

An EditContext is created by the outermost ``edit_entity`` call and handed
down to every nested edit. Nested edits append to ``errors``; each call
builds its own node of the relation-load tree and returns it to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from basemodel_shared.utils.error_bag import ErrorBag

from basemodel.services.crud.descriptors import RelationshipDescriptor

# relation name -> nested tree of relations to load below it
LoadTree = dict[str, "LoadTree"]


@dataclass
class EditContext:
    """Mutable state shared by reference across the recursive edit."""

    errors: ErrorBag = field(default_factory=ErrorBag)
    depth: int = 0

    def nested(self) -> EditContext:
        return EditContext(errors=self.errors, depth=self.depth + 1)


@dataclass(frozen=True)
class ParentLink:
    """
    The entity (``owner``) through whose ``relation`` a child is being edited.

    The child links back to ``owner`` through ``relation.inverse`` instead of
    editing it, and never detaches members of that inverse relation.
    """

    owner: Any
    relation: RelationshipDescriptor

    @property
    def inverse(self) -> str:
        return self.relation.inverse


def merge_load_trees(target: LoadTree, source: LoadTree) -> LoadTree:
    """Deep-merge ``source`` into ``target`` and return ``target``."""
    for name, subtree in source.items():
        merge_load_trees(target.setdefault(name, {}), subtree)
    return target


def load_paths(tree: LoadTree, prefix: str = "") -> list[str]:
    """Flatten a load tree into deduplicated dotted paths, parents first."""
    paths: list[str] = []
    for name, subtree in tree.items():
        path = f"{prefix}.{name}" if prefix else name
        paths.append(path)
        paths.extend(load_paths(subtree, path))
    return list(dict.fromkeys(paths))
