"""Read-through cache keyed by logical query identity.

Callers receive a ``QueryCache`` instance explicitly; there is no module-level
cache. Keys are tuples such as ``("work_orders", "status_counts")`` so that a
prefix like ``("work_orders",)`` invalidates every query about work orders.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Hashable, Tuple

QueryKey = Tuple[Hashable, ...]

_MISSING = object()


class QueryCache:
    def __init__(self) -> None:
        self._entries: Dict[QueryKey, Any] = {}

    def __contains__(self, key: QueryKey) -> bool:
        return tuple(key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: QueryKey, default: Any = None) -> Any:
        return self._entries.get(tuple(key), default)

    def set(self, key: QueryKey, value: Any) -> None:
        self._entries[tuple(key)] = value

    async def get_or_load(self, key: QueryKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        cached = self._entries.get(tuple(key), _MISSING)
        if cached is not _MISSING:
            return cached
        value = await loader()
        self._entries[tuple(key)] = value
        return value

    def invalidate(self, prefix: QueryKey) -> int:
        """Drop every entry whose key starts with ``prefix``; return how many were dropped."""

        prefix = tuple(prefix)
        stale = [key for key in self._entries if key[: len(prefix)] == prefix]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def patch(self, key: QueryKey, updater: Callable[[Any], Any]) -> bool:
        """Apply an optimistic local update to a cached value.

        Returns False (and leaves the cache untouched) when nothing is cached
        under ``key``.
        """

        cached = self._entries.get(tuple(key), _MISSING)
        if cached is _MISSING:
            return False
        self._entries[tuple(key)] = updater(cached)
        return True
