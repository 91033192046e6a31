"""Per-step attempt counter and per-attempt start/outcome records."""

from __future__ import annotations

import logging
from typing import List, Optional

from .errors import ConditionFailed, PlangovError, StepAttemptNotFound
from .models import StepAttempt, StepExecutionRecord, StepExecutionStatus
from .store import AttributeEquals, ItemAbsent, KeyValueStore
from .utils.time import Clock, utc_now

logger = logging.getLogger(__name__)


def _step_prefix(plan_id: str, step_id: str) -> str:
    return f"plan#{plan_id}#step#{step_id}"


class StepExecutionState:
    """Two-phase attempt protocol: reserve a number, then claim it.

    ``reserve_next_attempt`` hands out unique, increasing attempt numbers.
    ``record_step_started`` is create-if-absent, so exactly one caller per
    attempt number gets ``claimed=True`` and may dispatch.
    """

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    @staticmethod
    def _meta_key(plan_id: str, step_id: str) -> str:
        return f"{_step_prefix(plan_id, step_id)}#meta"

    @staticmethod
    def _attempt_key(plan_id: str, step_id: str, attempt: int) -> str:
        return f"{_step_prefix(plan_id, step_id)}#attempt#{attempt}"

    async def get_current_next_attempt(self, plan_id: str, step_id: str) -> int:
        """Number of attempts reserved so far (0 if none)."""
        meta = await self._store.get(self._meta_key(plan_id, step_id))
        return int((meta or {}).get("next_attempt") or 0)

    async def reserve_next_attempt(self, plan_id: str, step_id: str) -> int:
        item = await self._store.update(
            self._meta_key(plan_id, step_id),
            changes={"plan_id": plan_id, "step_id": step_id},
            increment={"next_attempt": 1},
        )
        attempt = int(item.get("next_attempt") or 0)
        if attempt < 1:
            raise PlangovError(
                f"Attempt counter for {plan_id}/{step_id} returned {attempt}"
            )
        return attempt

    async def record_step_started(
        self, plan_id: str, step_id: str, attempt: int
    ) -> StepAttempt:
        record = StepExecutionRecord(
            plan_id=plan_id, step_id=step_id, attempt=attempt, started_at=self._clock()
        )
        item = record.model_dump(mode="json")
        item["_index"] = {
            "step_attempts": [_step_prefix(plan_id, step_id), f"{attempt:010d}"]
        }
        try:
            await self._store.put(
                self._attempt_key(plan_id, step_id, attempt), item, condition=ItemAbsent()
            )
        except ConditionFailed:
            return StepAttempt(attempt=attempt, claimed=False)
        return StepAttempt(attempt=attempt, claimed=True)

    async def update_step_outcome(
        self,
        plan_id: str,
        step_id: str,
        attempt: int,
        status: StepExecutionStatus,
        outcome_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Finish a STARTED attempt. Returns ``False`` if it was already finished."""
        key = self._attempt_key(plan_id, step_id, attempt)
        changes = {
            "status": StepExecutionStatus(status).value,
            "completed_at": self._clock().isoformat(),
            "outcome_id": outcome_id,
            "error_message": error_message,
        }
        try:
            await self._store.update(
                key,
                changes=changes,
                condition=AttributeEquals("status", StepExecutionStatus.STARTED.value),
            )
        except ConditionFailed:
            if await self._store.get(key) is None:
                raise StepAttemptNotFound(plan_id, step_id, attempt)
            logger.debug(
                f"Attempt {attempt} of {plan_id}/{step_id} already has an outcome"
            )
            return False
        return True

    async def get_attempt(
        self, plan_id: str, step_id: str, attempt: int
    ) -> Optional[StepExecutionRecord]:
        item = await self._store.get(self._attempt_key(plan_id, step_id, attempt))
        return StepExecutionRecord.model_validate(item) if item else None

    async def list_attempts(self, plan_id: str, step_id: str) -> List[StepExecutionRecord]:
        items = await self._store.query("step_attempts", _step_prefix(plan_id, step_id))
        return [StepExecutionRecord.model_validate(item) for item in items]
