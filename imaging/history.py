"""Bounded undo/redo history of serialized states."""
from __future__ import annotations

from collections import deque
from typing import Deque, Optional

DEFAULT_MAX_HISTORY = 50


class SnapshotHistory:
    """Ordered list of snapshots plus a cursor pointing at the current one.

    Pushing after an undo discards the redo tail. Once ``max_length``
    snapshots are held the oldest is dropped.
    """

    def __init__(self, max_length: int = DEFAULT_MAX_HISTORY) -> None:
        if max_length < 1:
            raise ValueError("max_length must be at least 1")
        self._snapshots: Deque[str] = deque(maxlen=max_length)
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._snapshots)

    @property
    def current(self) -> Optional[str]:
        if self._cursor < 0:
            return None
        return self._snapshots[self._cursor]

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._snapshots) - 1

    def push(self, snapshot: str) -> None:
        while len(self._snapshots) > self._cursor + 1:
            self._snapshots.pop()
        self._snapshots.append(snapshot)
        self._cursor = len(self._snapshots) - 1

    def undo(self) -> Optional[str]:
        if not self.can_undo:
            return None
        self._cursor -= 1
        return self._snapshots[self._cursor]

    def redo(self) -> Optional[str]:
        if not self.can_redo:
            return None
        self._cursor += 1
        return self._snapshots[self._cursor]

    def clear(self) -> None:
        self._snapshots.clear()
        self._cursor = -1
