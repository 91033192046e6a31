"""Operator-facing plan commands: propose, approve, pause, resume, abort."""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from .errors import TransitionConflict, UnsupportedPlanType
from .ledger import PlanLedger
from .lifecycle import PlanLifecycle, is_allowed
from .models import LedgerEventType, Plan, PlanStatus
from .policy_gate import PlanPolicyGate, PolicyReason, ReasonCode
from .proposal import PlanProposalGenerator
from .repository import PlanRepository

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    ok: bool
    plan_id: Optional[str] = None
    status: Optional[PlanStatus] = None
    reasons: List[PolicyReason] = Field(default_factory=list)
    error: Optional[str] = None
    plan: Optional[Plan] = None

    @classmethod
    def success(cls, plan: Plan) -> "CommandResult":
        return cls(ok=True, plan_id=plan.plan_id, status=plan.status, plan=plan)

    @classmethod
    def failure(
        cls,
        error: str,
        plan: Optional[Plan] = None,
        reasons: Optional[List[PolicyReason]] = None,
    ) -> "CommandResult":
        return cls(
            ok=False,
            error=error,
            plan_id=plan.plan_id if plan else None,
            status=plan.status if plan else None,
            reasons=reasons or [],
        )


class PlanCommands:
    """The operations an API layer exposes, without any transport.

    Validation problems come back as failed :class:`CommandResult` objects;
    unexpected errors propagate.
    """

    def __init__(
        self,
        repository: PlanRepository,
        lifecycle: PlanLifecycle,
        policy_gate: PlanPolicyGate,
        ledger: PlanLedger,
        proposals: PlanProposalGenerator,
    ) -> None:
        self._repository = repository
        self._lifecycle = lifecycle
        self._gate = policy_gate
        self._ledger = ledger
        self._proposals = proposals

    async def _transition(self, plan: Plan, to_status: PlanStatus, **options) -> CommandResult:
        try:
            updated = await self._lifecycle.transition(plan, to_status, **options)
        except TransitionConflict as exc:
            logger.warning(str(exc))
            return CommandResult.failure(
                "Plan changed concurrently; re-read and retry", plan
            )
        return CommandResult.success(updated)

    async def propose(self, tenant_id: str, account_id: str, plan_type: str) -> CommandResult:
        try:
            plan = self._proposals.generate(tenant_id, account_id, plan_type)
        except UnsupportedPlanType as exc:
            return CommandResult.failure(str(exc))
        await self._repository.put_plan(plan)
        await self._ledger.append(
            plan.plan_id,
            tenant_id,
            account_id,
            LedgerEventType.PLAN_CREATED,
            {
                "plan_id": plan.plan_id,
                "plan_type": plan.plan_type,
                "account_id": account_id,
                "tenant_id": tenant_id,
                "trigger": "proposal_generated",
            },
        )
        logger.info(f"Plan {plan.plan_id} proposed for {tenant_id}/{account_id}")
        return CommandResult.success(plan)

    async def approve(
        self,
        tenant_id: str,
        account_id: str,
        plan_id: str,
        approved_by: Optional[str] = None,
    ) -> CommandResult:
        plan = await self._repository.get_plan(tenant_id, account_id, plan_id)
        if plan is None:
            return CommandResult.failure("Plan not found")
        if plan.status != PlanStatus.DRAFT:
            return CommandResult.failure("Plan must be in DRAFT to approve", plan)
        verdict = self._gate.validate_for_approval(plan)
        if not verdict.valid:
            return CommandResult.failure("Validation failed", plan, verdict.reasons)
        return await self._transition(plan, PlanStatus.APPROVED, approved_by=approved_by)

    async def pause(
        self, tenant_id: str, account_id: str, plan_id: str, reason: Optional[str] = None
    ) -> CommandResult:
        plan = await self._repository.get_plan(tenant_id, account_id, plan_id)
        if plan is None:
            return CommandResult.failure("Plan not found")
        if plan.status != PlanStatus.ACTIVE:
            return CommandResult.failure("Plan must be ACTIVE to pause", plan)
        return await self._transition(plan, PlanStatus.PAUSED, reason=reason)

    async def resume(
        self,
        tenant_id: str,
        account_id: str,
        plan_id: str,
        preconditions_met: bool = True,
    ) -> CommandResult:
        plan = await self._repository.get_plan(tenant_id, account_id, plan_id)
        if plan is None:
            return CommandResult.failure("Plan not found")
        if plan.status != PlanStatus.PAUSED:
            return CommandResult.failure("Plan must be PAUSED to resume", plan)

        active_ids = await self._repository.list_plan_ids(
            tenant_id, account_id, plan.plan_type, PlanStatus.ACTIVE
        )
        verdict = self._gate.evaluate_can_activate(
            plan, existing_active_plan_ids=active_ids, preconditions_met=preconditions_met
        )
        if not verdict.can_activate:
            if verdict.has(ReasonCode.CONFLICT_ACTIVE_PLAN):
                await self._ledger.append(
                    plan.plan_id,
                    tenant_id,
                    account_id,
                    LedgerEventType.PLAN_ACTIVATION_REJECTED,
                    {
                        "plan_type": plan.plan_type,
                        "conflicting_plan_ids": sorted(
                            pid for pid in active_ids if pid != plan.plan_id
                        ),
                        "caller": "api_resume",
                        "reason_code": ReasonCode.CONFLICT_ACTIVE_PLAN.value,
                    },
                )
            return CommandResult.failure("Cannot resume", plan, verdict.reasons)
        return await self._transition(plan, PlanStatus.ACTIVE)

    async def abort(
        self, tenant_id: str, account_id: str, plan_id: str, reason: Optional[str] = None
    ) -> CommandResult:
        plan = await self._repository.get_plan(tenant_id, account_id, plan_id)
        if plan is None:
            return CommandResult.failure("Plan not found")
        if plan.status.is_terminal:
            return CommandResult.failure("Plan is already terminal", plan)
        if not is_allowed(plan.status, PlanStatus.ABORTED):
            return CommandResult.failure(
                f"Plan cannot be aborted from {plan.status.value}", plan
            )
        return await self._transition(plan, PlanStatus.ABORTED, reason=reason)
