"""SQLite implementation of the key-value store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from ..errors import ConditionFailed
from .base import Condition, KeyValueStore, apply_update, index_entries, public_view

T = TypeVar("T")


class SQLiteStore(KeyValueStore):
    """Persist items using SQLite.

    Every write runs inside ``BEGIN IMMEDIATE`` so the condition check and the
    write are one transaction, also across processes sharing the file.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS items (
                key TEXT PRIMARY KEY,
                item TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS item_index (
                index_name TEXT NOT NULL,
                partition TEXT NOT NULL,
                sort_key TEXT NOT NULL,
                key TEXT NOT NULL,
                PRIMARY KEY (index_name, key)
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS item_index_lookup
            ON item_index (index_name, partition, sort_key)
            """
        )

    # ------------------------------------------------------------------
    # Helper methods
    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        row = self._conn.execute("SELECT item FROM items WHERE key = ?", (key,)).fetchone()
        return json.loads(row["item"]) if row else None

    def _write(self, key: str, item: Dict[str, Any]) -> None:
        self._conn.execute(
            "INSERT INTO items (key, item) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET item = excluded.item",
            (key, json.dumps(item)),
        )
        self._conn.execute("DELETE FROM item_index WHERE key = ?", (key,))
        for name, (partition, sort_key) in index_entries(item).items():
            self._conn.execute(
                "INSERT INTO item_index (index_name, partition, sort_key, key) "
                "VALUES (?, ?, ?, ?)",
                (name, partition, sort_key, key),
            )

    def _transaction(
        self,
        key: str,
        condition: Optional[Condition],
        build: Callable[[Optional[Dict[str, Any]]], Dict[str, Any]],
    ) -> Dict[str, Any]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._read(key)
                if condition is not None and not condition.holds(current):
                    raise ConditionFailed(key, condition)
                item = build(current)
                self._write(key, item)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
            return item

    def _locked(self, fn: Callable[[], T]) -> T:
        with self._lock:
            return fn()

    # ------------------------------------------------------------------
    # Store API
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        item = await asyncio.to_thread(self._locked, lambda: self._read(key))
        return public_view(item)

    async def put(
        self, key: str, item: Mapping[str, Any], condition: Optional[Condition] = None
    ) -> None:
        await asyncio.to_thread(
            self._transaction, key, condition, lambda _current: apply_update(None, item)
        )

    async def update(
        self,
        key: str,
        *,
        changes: Optional[Mapping[str, Any]] = None,
        increment: Optional[Mapping[str, float]] = None,
        condition: Optional[Condition] = None,
    ) -> Dict[str, Any]:
        item = await asyncio.to_thread(
            self._transaction,
            key,
            condition,
            lambda current: apply_update(current, changes, increment),
        )
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
        order = "DESC" if descending else "ASC"
        sql = (
            "SELECT i.item FROM item_index x JOIN items i ON i.key = x.key "
            "WHERE x.index_name = ? AND x.partition = ? "
            "AND substr(x.sort_key, 1, length(?)) = ? "
            f"ORDER BY x.sort_key {order}, x.key {order}"
        )
        params: list[Any] = [index, partition, prefix, prefix]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        def _fetch() -> list[sqlite3.Row]:
            return self._conn.execute(sql, params).fetchall()

        rows = await asyncio.to_thread(self._locked, _fetch)
        return [public_view(json.loads(r["item"])) for r in rows]

    async def close(self) -> None:
        await asyncio.to_thread(self._locked, self._conn.close)
