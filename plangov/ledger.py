"""Append-only per-plan audit log."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from .models import LedgerEntry, LedgerEventType
from .store import ItemAbsent, KeyValueStore
from .utils.time import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)


class PlanLedger:
    """Record every plan state change and governance decision.

    Entries are written once under a key unique per (plan, timestamp,
    entry id) and never updated.
    """

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    @staticmethod
    def _partition(plan_id: str) -> str:
        return f"plan#{plan_id}"

    async def append(
        self,
        plan_id: str,
        tenant_id: str,
        account_id: str,
        event_type: LedgerEventType,
        data: Optional[Dict[str, Any]] = None,
    ) -> LedgerEntry:
        """Persist a new entry and return it with its id and timestamp."""
        entry = LedgerEntry(
            entry_id=uuid.uuid4().hex,
            plan_id=plan_id,
            tenant_id=tenant_id,
            account_id=account_id,
            event_type=event_type,
            timestamp=self._clock(),
            data=data or {},
        )
        sort_key = f"{isoformat(entry.timestamp)}#{entry.entry_id}"
        item = entry.model_dump(mode="json")
        item["_index"] = {"plan_events": [self._partition(plan_id), sort_key]}
        await self._store.put(
            f"ledger#{self._partition(plan_id)}#{sort_key}", item, condition=ItemAbsent()
        )
        logger.debug(
            f"Ledger entry {entry.entry_id} appended: {event_type.value} for plan {plan_id}"
        )
        return entry

    async def query_by_plan(
        self, plan_id: str, limit: Optional[int] = None
    ) -> List[LedgerEntry]:
        """Entries for ``plan_id``, most recent first."""
        items = await self._store.query(
            "plan_events", self._partition(plan_id), limit=limit, descending=True
        )
        return [LedgerEntry.model_validate(item) for item in items]
