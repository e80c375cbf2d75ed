"""Fixed-capacity record history with drop-oldest eviction."""

from __future__ import annotations

from collections import deque
from typing import Deque, Generic, Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class BoundedHistory(Generic[T]):
    """Ring buffer keeping the most recent ``capacity`` records.

    Eviction is strictly insertion ordered: once full, appending a record
    drops the oldest one regardless of how recently it was read.
    """

    def __init__(self, capacity: int, items: Iterable[T] = ()) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._items: Deque[T] = deque(items, maxlen=capacity)

    @property
    def capacity(self) -> int:
        assert self._items.maxlen is not None
        return self._items.maxlen

    def append(self, item: T) -> Optional[T]:
        """Store ``item`` and return the record evicted to make room, if any."""

        evicted: Optional[T] = None
        if len(self._items) == self.capacity:
            evicted = self._items[0]
        self._items.append(item)
        return evicted

    def recent(self, limit: int = 10) -> List[T]:
        if limit <= 0:
            return []
        return list(self._items)[-limit:]

    def latest(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def snapshot(self) -> List[T]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __bool__(self) -> bool:
        return bool(self._items)


__all__ = ["BoundedHistory"]
