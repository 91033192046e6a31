"""Plan status state machine: legal transitions, persisted then audited."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional

from .errors import InvalidTransition, UnauditedTransition
from .ledger import PlanLedger
from .models import CompletionReason, LedgerEventType, Plan, PlanStatus
from .repository import PlanRepository
from .utils.time import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[PlanStatus, FrozenSet[PlanStatus]] = {
    PlanStatus.DRAFT: frozenset({PlanStatus.APPROVED}),
    PlanStatus.APPROVED: frozenset({PlanStatus.ACTIVE, PlanStatus.ABORTED}),
    PlanStatus.ACTIVE: frozenset(
        {PlanStatus.PAUSED, PlanStatus.COMPLETED, PlanStatus.ABORTED, PlanStatus.EXPIRED}
    ),
    PlanStatus.PAUSED: frozenset({PlanStatus.ACTIVE, PlanStatus.ABORTED}),
    PlanStatus.COMPLETED: frozenset(),
    PlanStatus.ABORTED: frozenset(),
    PlanStatus.EXPIRED: frozenset(),
}

_EVENT_FOR_STATUS = {
    PlanStatus.APPROVED: LedgerEventType.PLAN_APPROVED,
    PlanStatus.ACTIVE: LedgerEventType.PLAN_ACTIVATED,
    PlanStatus.PAUSED: LedgerEventType.PLAN_PAUSED,
    PlanStatus.COMPLETED: LedgerEventType.PLAN_COMPLETED,
    PlanStatus.ABORTED: LedgerEventType.PLAN_ABORTED,
    PlanStatus.EXPIRED: LedgerEventType.PLAN_EXPIRED,
}


def is_allowed(from_status: PlanStatus, to_status: PlanStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(PlanStatus(from_status), frozenset())


def ledger_event_for(from_status: PlanStatus, to_status: PlanStatus) -> LedgerEventType:
    """Event recorded for a transition; PAUSED -> ACTIVE is a resume."""
    if from_status == PlanStatus.PAUSED and to_status == PlanStatus.ACTIVE:
        return LedgerEventType.PLAN_RESUMED
    return _EVENT_FOR_STATUS[to_status]


class PlanLifecycle:
    """Apply plan status transitions.

    The status write uses the previous status as its precondition, so a
    concurrent transition surfaces as :class:`~plangov.errors.TransitionConflict`.
    The ledger append follows the write; if it fails the transition is left
    unaudited and :class:`~plangov.errors.UnauditedTransition` is raised.
    Callers must re-read the plan before retrying.
    """

    def __init__(
        self, repository: PlanRepository, ledger: PlanLedger, clock: Clock = utc_now
    ) -> None:
        self._repository = repository
        self._ledger = ledger
        self._clock = clock

    async def transition(
        self,
        plan: Plan,
        to_status: PlanStatus,
        *,
        reason: Optional[str] = None,
        approved_by: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        completion_reason: Optional[CompletionReason] = None,
        aborted_at: Optional[datetime] = None,
        expired_at: Optional[datetime] = None,
    ) -> Plan:
        from_status = PlanStatus(plan.status)
        to_status = PlanStatus(to_status)
        if not is_allowed(from_status, to_status):
            raise InvalidTransition(plan.plan_id, from_status.value, to_status.value)

        now = self._clock()
        fields: Dict[str, Any] = {}
        if to_status == PlanStatus.APPROVED:
            fields["approved_at"] = now
            if approved_by is not None:
                fields["approved_by"] = approved_by
        elif to_status == PlanStatus.COMPLETED:
            fields["completed_at"] = completed_at or now
            if completion_reason is not None:
                fields["completion_reason"] = CompletionReason(completion_reason)
        elif to_status == PlanStatus.ABORTED:
            fields["aborted_at"] = aborted_at or now
        elif to_status == PlanStatus.EXPIRED:
            fields["expired_at"] = expired_at or now

        updated = await self._repository.update_plan_status(
            plan.tenant_id,
            plan.account_id,
            plan.plan_id,
            to_status,
            expected_status=from_status,
            fields=fields,
        )

        event_type = ledger_event_for(from_status, to_status)
        data: Dict[str, Any] = {
            "plan_id": plan.plan_id,
            "from_status": from_status.value,
            "to_status": to_status.value,
        }
        if reason is not None:
            data["reason"] = reason
        for name, value in fields.items():
            if isinstance(value, datetime):
                value = isoformat(value)
            elif isinstance(value, CompletionReason):
                value = value.value
            data[name] = value
        try:
            await self._ledger.append(
                plan.plan_id, plan.tenant_id, plan.account_id, event_type, data
            )
        except Exception as exc:
            logger.error(
                f"Unaudited transition for plan {plan.plan_id}: "
                f"{from_status.value} -> {to_status.value} ({exc})"
            )
            raise UnauditedTransition(
                plan.plan_id, from_status.value, to_status.value
            ) from exc

        logger.info(
            f"Plan {plan.plan_id} transitioned {from_status.value} -> {to_status.value}"
        )
        return updated
