"""Storage backends for plans, ledger entries, step records and budget usage."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PlangovConfig
from .base import (
    AllOf,
    AnyOf,
    AttributeAtMost,
    AttributeEquals,
    Condition,
    ItemAbsent,
    ItemExists,
    KeyValueStore,
)
from .inmemory import InMemoryStore
from .postgres import PostgresStore
from .sqlite import SQLiteStore


def get_store(
    database_url: Optional[str] = None, config: Optional[PlangovConfig] = None
) -> KeyValueStore:
    """Factory function to obtain a key-value store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``PLANGOV_DATABASE_URL`` or
    ``DATABASE_URL``, or from configuration. When no database is configured,
    an in-memory store is returned.
    """

    database_url = (
        database_url
        or os.getenv("PLANGOV_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or (config.store.database_url if config else None)
    )

    if not database_url:
        return InMemoryStore()

    if database_url.startswith("sqlite://"):
        return SQLiteStore(database_url.replace("sqlite://", "", 1))
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        return PostgresStore(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "AllOf",
    "AnyOf",
    "AttributeAtMost",
    "AttributeEquals",
    "Condition",
    "InMemoryStore",
    "ItemAbsent",
    "ItemExists",
    "KeyValueStore",
    "PostgresStore",
    "SQLiteStore",
    "get_store",
]
