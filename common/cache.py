"""Read-through TTL cache for read-mostly listings such as the public room list."""
from __future__ import annotations

from typing import Callable, Generic, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class ReadThroughCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 64) -> None:
        self._entries: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: str) -> Optional[T]:
        return self._entries.get(key)

    def get_or_load(self, key: str, loader: Callable[[], T]) -> T:
        """Return the cached value for ``key``, calling ``loader`` on a miss or expiry."""
        cached = self._entries.get(key)
        if cached is not None:
            return cached
        value = loader()
        self._entries[key] = value
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one entry, or everything when ``key`` is omitted."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
