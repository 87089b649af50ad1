"""Bounded cache of a session's most recent events.

Serves as the backfill source for viewers that attach mid-session.
Once full, each push overwrites the oldest entry.
"""
from __future__ import annotations

from collections import deque
from typing import Generic, TypeVar

T = TypeVar("T")

DEFAULT_CAPACITY = 100


class RecentEventCache(Generic[T]):
    """Fixed-capacity FIFO. Never holds more than ``capacity`` items."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._items: deque[T] = deque(maxlen=capacity)

    def push(self, item: T) -> None:
        self._items.append(item)

    def snapshot(self) -> list[T]:
        """Held items, oldest first."""
        return list(self._items)

    def recent(self, n: int) -> list[T]:
        """The newest ``n`` items, oldest first."""
        if n <= 0:
            return []
        items = list(self._items)
        return items[-n:]

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
