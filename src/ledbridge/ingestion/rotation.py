"""Rotation cursor selecting which exchange pair the display shows each cycle."""

from collections.abc import Sequence
from typing import TypeVar

T = TypeVar("T")


class RotationCursor:
    """In-memory index into the current cycle's result set.

    Owned by the exchange scheduler only. Not persisted: a restart resumes
    at index 0. The index is always interpreted modulo the length of the
    result set it is applied to, so it tolerates watch-list changes.
    """

    def __init__(self, index: int = 0) -> None:
        if index < 0:
            raise ValueError(f"rotation index must be non-negative, got {index}")
        self._index = index

    @property
    def index(self) -> int:
        return self._index

    def select(self, items: Sequence[T]) -> T | None:
        """Return the item due for display, or None for an empty result set."""
        if not items:
            return None
        return items[self._index % len(items)]

    def advance(self, length: int) -> None:
        """Move to the next item; an empty result set leaves the index unchanged."""
        if length <= 0:
            return
        self._index = (self._index % length + 1) % length
