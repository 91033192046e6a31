"""PostgreSQL implementation of the key-value store."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Mapping, Optional

import asyncpg

from ..errors import ConditionFailed
from .base import Condition, KeyValueStore, apply_update, index_entries, public_view


class PostgresStore(KeyValueStore):
    """Persist items using PostgreSQL.

    Conditional writes take a transaction-scoped advisory lock on the item
    key, so concurrent writers to the same key are serialized by the server.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS plangov_items (
                key TEXT PRIMARY KEY,
                item JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS plangov_item_index (
                index_name TEXT NOT NULL,
                partition TEXT NOT NULL,
                sort_key TEXT NOT NULL,
                key TEXT NOT NULL,
                PRIMARY KEY (index_name, key)
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS plangov_item_index_lookup
            ON plangov_item_index (index_name, partition, sort_key)
            """
        )

    # ------------------------------------------------------------------
    async def _write(
        self,
        key: str,
        condition: Optional[Condition],
        build: Callable[[Optional[Dict[str, Any]]], Dict[str, Any]],
    ) -> Dict[str, Any]:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", key)
                row = await conn.fetchrow(
                    "SELECT item FROM plangov_items WHERE key = $1", key
                )
                current = json.loads(row["item"]) if row else None
                if condition is not None and not condition.holds(current):
                    raise ConditionFailed(key, condition)
                item = build(current)
                await conn.execute(
                    "INSERT INTO plangov_items (key, item) VALUES ($1, $2::jsonb) "
                    "ON CONFLICT (key) DO UPDATE SET item = EXCLUDED.item",
                    key,
                    json.dumps(item),
                )
                await conn.execute(
                    "DELETE FROM plangov_item_index WHERE key = $1", key
                )
                for name, (partition, sort_key) in index_entries(item).items():
                    await conn.execute(
                        "INSERT INTO plangov_item_index (index_name, partition, sort_key, key) "
                        "VALUES ($1, $2, $3, $4)",
                        name,
                        partition,
                        sort_key,
                        key,
                    )
            return item
        finally:
            await conn.close()

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT item FROM plangov_items WHERE key = $1", key)
        finally:
            await conn.close()
        return public_view(json.loads(row["item"])) if row else None

    async def put(
        self, key: str, item: Mapping[str, Any], condition: Optional[Condition] = None
    ) -> None:
        await self._write(key, condition, lambda _current: apply_update(None, item))

    async def update(
        self,
        key: str,
        *,
        changes: Optional[Mapping[str, Any]] = None,
        increment: Optional[Mapping[str, float]] = None,
        condition: Optional[Condition] = None,
    ) -> Dict[str, Any]:
        item = await self._write(
            key, condition, lambda current: apply_update(current, changes, increment)
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
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT i.item FROM plangov_item_index x "
                "JOIN plangov_items i ON i.key = x.key "
                "WHERE x.index_name = $1 AND x.partition = $2 "
                "AND left(x.sort_key, length($3)) = $3 "
                f"ORDER BY x.sort_key {order}, x.key {order} LIMIT $4",
                index,
                partition,
                prefix,
                limit,
            )
        finally:
            await conn.close()
        return [public_view(json.loads(r["item"])) for r in rows]
