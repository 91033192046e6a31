"""Plan persistence with DRAFT-only mutability and indexed queries."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .errors import (
    ConditionFailed,
    PlanNotFound,
    PlanNotMutable,
    StepNotFound,
    TransitionConflict,
)
from .models import Plan, PlanStatus, StepStatus
from .store import AnyOf, AttributeEquals, ItemAbsent, KeyValueStore
from .utils.time import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)

# Attempts at a version-checked step update before giving up.
STEP_UPDATE_RETRIES = 5


def plan_key(tenant_id: str, account_id: str, plan_id: str) -> str:
    return f"tenant#{tenant_id}#account#{account_id}#plan#{plan_id}"


def _indexes(plan: Plan) -> Dict[str, List[str]]:
    updated = isoformat(plan.updated_at)
    status = PlanStatus(plan.status).value
    return {
        "status": [
            f"tenant#{plan.tenant_id}#status#{status}",
            f"{updated}#{plan.plan_id}",
        ],
        "account": [
            f"tenant#{plan.tenant_id}",
            f"account#{plan.account_id}#{updated}#{plan.plan_id}",
        ],
        "account_type_status": [
            f"tenant#{plan.tenant_id}#account#{plan.account_id}"
            f"#type#{plan.plan_type}#status#{status}",
            plan.plan_id,
        ],
    }


class PlanRepository:
    """Tenant/account scoped CRUD and queries over plans."""

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def get_plan(
        self, tenant_id: str, account_id: str, plan_id: str
    ) -> Optional[Plan]:
        item = await self._store.get(plan_key(tenant_id, account_id, plan_id))
        return Plan.model_validate(item) if item else None

    async def put_plan(self, plan: Plan) -> None:
        """Create a plan, or replace one that is still DRAFT."""
        key = plan_key(plan.tenant_id, plan.account_id, plan.plan_id)
        item = plan.model_dump(mode="json")
        item["_index"] = _indexes(plan)
        try:
            await self._store.put(
                key,
                item,
                condition=AnyOf(
                    (ItemAbsent(), AttributeEquals("status", PlanStatus.DRAFT.value))
                ),
            )
        except ConditionFailed:
            current = await self._store.get(key)
            raise PlanNotMutable(plan.plan_id, (current or {}).get("status"))

    async def update_plan_status(
        self,
        tenant_id: str,
        account_id: str,
        plan_id: str,
        new_status: PlanStatus,
        *,
        expected_status: Optional[PlanStatus] = None,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Plan:
        """Move a plan to ``new_status`` if it is still in ``expected_status``.

        ``expected_status`` defaults to the status read just before the write.
        Raises :class:`TransitionConflict` when another writer got there first.
        """
        plan = await self.get_plan(tenant_id, account_id, plan_id)
        if plan is None:
            raise PlanNotFound(plan_id)
        expected = expected_status or plan.status

        updated = plan.model_copy(
            update={"status": new_status, "updated_at": self._clock(), **(fields or {})}
        )
        changes = updated.model_dump(
            mode="json", include={"status", "updated_at", *(fields or {})}
        )
        changes["_index"] = _indexes(updated)
        try:
            item = await self._store.update(
                plan_key(tenant_id, account_id, plan_id),
                changes=changes,
                increment={"version": 1},
                condition=AttributeEquals("status", PlanStatus(expected).value),
            )
        except ConditionFailed:
            raise TransitionConflict(
                plan_id, PlanStatus(expected).value, PlanStatus(new_status).value
            )
        return Plan.model_validate(item)

    async def update_step_status(
        self,
        tenant_id: str,
        account_id: str,
        plan_id: str,
        step_id: str,
        status: StepStatus,
    ) -> Plan:
        """Set one step's status, re-reading when a concurrent write bumps the version."""
        key = plan_key(tenant_id, account_id, plan_id)
        for _ in range(STEP_UPDATE_RETRIES):
            plan = await self.get_plan(tenant_id, account_id, plan_id)
            if plan is None:
                raise PlanNotFound(plan_id)
            step = plan.get_step(step_id)
            if step is None:
                raise StepNotFound(plan_id, step_id)
            step.status = status
            plan.updated_at = self._clock()
            changes = plan.model_dump(mode="json", include={"steps", "updated_at"})
            changes["_index"] = _indexes(plan)
            try:
                item = await self._store.update(
                    key,
                    changes=changes,
                    increment={"version": 1},
                    condition=AttributeEquals("version", plan.version),
                )
            except ConditionFailed:
                logger.debug(f"Plan {plan_id} changed during step update; re-reading")
                continue
            return Plan.model_validate(item)
        raise ConditionFailed(key, "version unchanged")

    async def list_plans_by_status(
        self, tenant_id: str, status: PlanStatus, limit: Optional[int] = None
    ) -> List[Plan]:
        """Plans of a tenant in ``status``, least recently updated first."""
        items = await self._store.query(
            "status", f"tenant#{tenant_id}#status#{PlanStatus(status).value}", limit=limit
        )
        return [Plan.model_validate(item) for item in items]

    async def list_plans_by_account(
        self, tenant_id: str, account_id: str, limit: Optional[int] = None
    ) -> List[Plan]:
        """Plans of one account, most recently updated first."""
        items = await self._store.query(
            "account",
            f"tenant#{tenant_id}",
            prefix=f"account#{account_id}#",
            limit=limit,
            descending=True,
        )
        return [Plan.model_validate(item) for item in items]

    async def list_plan_ids(
        self,
        tenant_id: str,
        account_id: str,
        plan_type: str,
        status: PlanStatus = PlanStatus.ACTIVE,
    ) -> List[str]:
        """Ids of the account's plans of ``plan_type`` currently in ``status``."""
        items = await self._store.query(
            "account_type_status",
            f"tenant#{tenant_id}#account#{account_id}"
            f"#type#{plan_type}#status#{PlanStatus(status).value}",
        )
        return [item["plan_id"] for item in items]
