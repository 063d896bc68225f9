"""Linear undo/redo stack of whole-table snapshots."""

from __future__ import annotations

from typing import Generic, List, TypeVar

T = TypeVar("T")


class History(Generic[T]):
    """
    Snapshots are treated as immutable: callers build a new snapshot for
    every change and hand it over with `push` (new frame) or
    `replace_current` (coalesced edit). Undo and redo only move the index.
    """

    def __init__(self, initial: T | None = None) -> None:
        self._frames: List[T] = []
        self._index = -1
        if initial is not None:
            self.reset(initial)

    def reset(self, snapshot: T) -> None:
        self._frames = [snapshot]
        self._index = 0

    def clear(self) -> None:
        self._frames = []
        self._index = -1

    @property
    def current(self) -> T | None:
        if 0 <= self._index < len(self._frames):
            return self._frames[self._index]
        return None

    @property
    def index(self) -> int:
        return self._index

    def __len__(self) -> int:
        return len(self._frames)

    def push(self, snapshot: T) -> None:
        """Drop any redo tail and make `snapshot` the current frame."""
        self._frames = self._frames[: self._index + 1]
        self._frames.append(snapshot)
        self._index = len(self._frames) - 1

    def replace_current(self, snapshot: T) -> None:
        """Overwrite the current frame in place of pushing a new one."""
        if 0 <= self._index < len(self._frames):
            self._frames[self._index] = snapshot
        else:
            self.reset(snapshot)

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._frames) - 1

    def undo(self) -> bool:
        if not self.can_undo:
            return False
        self._index -= 1
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            return False
        self._index += 1
        return True
