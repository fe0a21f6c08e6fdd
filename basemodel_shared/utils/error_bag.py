"""
Aggregated error container for nested edits.

One ErrorBag is created by the outermost edit and shared by reference with
every nested edit, so a single response can report problems from anywhere in
the entity graph.

Usage:
    bag = ErrorBag()
    bag.add("Order", "customer is required")
    bag.merge({"items": ["Relation 'order' of OrderItem has no inverse"]})
    if bag:
        raise BulkValidationError(bag)
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping


class ErrorBag:
    """Mapping of key (model name, relation name or ``general``) to messages."""

    def __init__(self, initial: Mapping[str, Iterable[str]] | None = None):
        self._messages: dict[str, list[str]] = {}
        if initial:
            self.merge(initial)

    def add(self, key: str, message: str) -> None:
        self._messages.setdefault(key, []).append(message)

    def extend(self, key: str, messages: Iterable[str]) -> None:
        for message in messages:
            self.add(key, message)

    def merge(self, other: ErrorBag | Mapping[str, Iterable[str]]) -> None:
        """
        Merge another bag (or plain mapping) into this one.

        Messages are appended, never overwritten. Merging a bag into itself
        is a no-op.
        """
        if other is self:
            return
        for key, messages in other.items():
            if isinstance(messages, str):
                self.add(key, messages)
            else:
                self.extend(key, messages)

    def count(self) -> int:
        """Total number of messages across all keys."""
        return sum(len(v) for v in self._messages.values())

    def get(self, key: str) -> list[str]:
        return list(self._messages.get(key, ()))

    def items(self) -> Iterator[tuple[str, list[str]]]:
        return iter((k, list(v)) for k, v in self._messages.items())

    def keys(self) -> list[str]:
        return list(self._messages)

    def to_dict(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self._messages.items()}

    def __contains__(self, key: object) -> bool:
        return key in self._messages

    def __getitem__(self, key: str) -> list[str]:
        return self._messages[key]

    def __len__(self) -> int:
        return len(self._messages)

    def __bool__(self) -> bool:
        return any(self._messages.values())

    def __repr__(self) -> str:
        return f"ErrorBag({self._messages!r})"
