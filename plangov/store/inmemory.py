"""In-memory implementation of the key-value store."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

from ..errors import ConditionFailed
from .base import Condition, KeyValueStore, apply_update, index_entries, public_view


class InMemoryStore(KeyValueStore):
    """Store items in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Conditional writes are serialized by
    a single lock, which makes them atomic within one event loop.
    """

    def __init__(self) -> None:
        self._items: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    def _check(self, key: str, condition: Optional[Condition]) -> None:
        if condition is not None and not condition.holds(self._items.get(key)):
            raise ConditionFailed(key, condition)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        return public_view(self._items.get(key))

    async def put(
        self, key: str, item: Mapping[str, Any], condition: Optional[Condition] = None
    ) -> None:
        async with self._lock:
            self._check(key, condition)
            self._items[key] = apply_update(None, item)

    async def update(
        self,
        key: str,
        *,
        changes: Optional[Mapping[str, Any]] = None,
        increment: Optional[Mapping[str, float]] = None,
        condition: Optional[Condition] = None,
    ) -> Dict[str, Any]:
        async with self._lock:
            self._check(key, condition)
            item = apply_update(self._items.get(key), changes, increment)
            self._items[key] = item
            return public_view(item)

    async def query(
        self,
        index: str,
        partition: str,
        *,
        prefix: str = "",
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> list[Dict[str, Any]]:
        matches = []
        for key, item in self._items.items():
            entry = index_entries(item).get(index)
            if entry and entry[0] == partition and entry[1].startswith(prefix):
                matches.append((entry[1], key, item))
        matches.sort(key=lambda m: (m[0], m[1]), reverse=descending)
        if limit is not None:
            matches = matches[:limit]
        return [public_view(item) for _, _, item in matches]
