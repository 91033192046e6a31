"""Usage counters and per-operation outcome records for budget reservations."""

from __future__ import annotations

from typing import Dict, Optional

from ..errors import ConditionFailed
from ..store import AnyOf, AttributeAtMost, AttributeEquals, ItemAbsent, KeyValueStore
from .models import BudgetResult, BudgetScope, CostClass, ReserveOutcome

OPERATION_PENDING = "PENDING"
OPERATION_DONE = "DONE"
OPERATION_RELEASED = "RELEASED"


class BudgetUsageStore:
    """One usage item per (scope, period_key) holding a counter per cost class.

    :meth:`reserve` is a single conditional increment, so concurrent
    reservers can never push usage past the hard cap.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @staticmethod
    def _usage_key(scope: BudgetScope, period_key: str) -> str:
        return f"budget#usage#{scope.storage_key()}#{period_key}"

    @staticmethod
    def _operation_key(
        scope: BudgetScope, period_key: str, cost_class: CostClass, operation_id: str
    ) -> str:
        return (
            f"budget#op#{scope.storage_key()}#{period_key}"
            f"#{CostClass(cost_class).value}#{operation_id}"
        )

    async def get_usage(self, scope: BudgetScope, period_key: str) -> Dict[CostClass, int]:
        item = await self._store.get(self._usage_key(scope, period_key)) or {}
        return {cc: int(item.get(cc.value) or 0) for cc in CostClass}

    async def reserve(
        self,
        scope: BudgetScope,
        period_key: str,
        cost_class: CostClass,
        amount: int,
        hard_cap: Optional[int],
    ) -> ReserveOutcome:
        """Add ``amount`` unless the result would exceed ``hard_cap`` (None = unbounded)."""
        name = CostClass(cost_class).value
        condition = AttributeAtMost(name, hard_cap - amount) if hard_cap is not None else None
        key = self._usage_key(scope, period_key)
        try:
            item = await self._store.update(key, increment={name: amount}, condition=condition)
        except ConditionFailed:
            current = await self._store.get(key) or {}
            return ReserveOutcome(success=False, usage_after=int(current.get(name) or 0))
        return ReserveOutcome(success=True, usage_after=int(item[name]))

    async def claim_operation(
        self, scope: BudgetScope, period_key: str, cost_class: CostClass, operation_id: str
    ) -> bool:
        """Create the operation record if absent or released. Only one caller gets True."""
        try:
            await self._store.put(
                self._operation_key(scope, period_key, cost_class, operation_id),
                {"operation_id": operation_id, "state": OPERATION_PENDING},
                condition=AnyOf((ItemAbsent(), AttributeEquals("state", OPERATION_RELEASED))),
            )
        except ConditionFailed:
            return False
        return True

    async def release_operation(
        self, scope: BudgetScope, period_key: str, cost_class: CostClass, operation_id: str
    ) -> None:
        """Give up a PENDING claim so a later call for the operation can retry it."""
        try:
            await self._store.update(
                self._operation_key(scope, period_key, cost_class, operation_id),
                changes={"state": OPERATION_RELEASED},
                condition=AttributeEquals("state", OPERATION_PENDING),
            )
        except ConditionFailed:
            # Settled or released by someone else.
            return

    async def get_stored_outcome(
        self, scope: BudgetScope, period_key: str, cost_class: CostClass, operation_id: str
    ) -> Optional[BudgetResult]:
        item = await self._store.get(
            self._operation_key(scope, period_key, cost_class, operation_id)
        )
        if not item or item.get("state") != OPERATION_DONE:
            return None
        return BudgetResult.model_validate(item["outcome"])

    async def set_stored_outcome(
        self,
        scope: BudgetScope,
        period_key: str,
        cost_class: CostClass,
        operation_id: str,
        outcome: BudgetResult,
    ) -> None:
        await self._store.update(
            self._operation_key(scope, period_key, cost_class, operation_id),
            changes={"state": OPERATION_DONE, "outcome": outcome.model_dump(mode="json")},
        )
