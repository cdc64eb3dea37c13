from __future__ import annotations

from collections import deque
from typing import Deque, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")

DEFAULT_LIMIT = 1000


class BoundedBuffer(Generic[T]):
    """Fixed-capacity ordered log; the oldest entry is evicted first."""

    def __init__(self, max_entries: int = DEFAULT_LIMIT):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: Deque[T] = deque()
        self.evicted = 0

    def append(self, entry: T) -> None:
        self._entries.append(entry)
        self._enforce_limit()

    def _enforce_limit(self) -> None:
        while len(self._entries) > self.max_entries:
            self._entries.popleft()
            self.evicted += 1

    def recent(self, limit: int = 10) -> List[T]:
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def snapshot(self) -> List[T]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._entries))


class CommandHistory:
    """Issued commands plus a recall cursor clamped to ``[0, len]``."""

    def __init__(self):
        self._commands: List[str] = []
        self.cursor = 0

    def push(self, command: str) -> None:
        self._commands.append(command)
        self.cursor = len(self._commands)

    def previous(self) -> Optional[str]:
        if self.cursor > 0:
            self.cursor -= 1
            return self._commands[self.cursor]
        return None

    def next(self) -> str:
        if self.cursor < len(self._commands) - 1:
            self.cursor += 1
            return self._commands[self.cursor]
        self.cursor = len(self._commands)
        return ""

    @property
    def entries(self) -> List[str]:
        return list(self._commands)

    def __len__(self) -> int:
        return len(self._commands)


__all__ = ["BoundedBuffer", "CommandHistory", "DEFAULT_LIMIT"]
