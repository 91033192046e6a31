"""Batch scheduler that activates approved plans and advances active ones."""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel

from .adapters.base import ExecutionAdapter
from .config import OrchestratorConfig, PlanTypeCatalog
from .errors import PlanNotFound, TransitionConflict
from .evaluator import Complete, Expire, PlanStateEvaluator
from .ledger import PlanLedger
from .lifecycle import PlanLifecycle
from .models import (
    LedgerEventType,
    Plan,
    PlanStatus,
    PlanStep,
    StepExecutionStatus,
    StepOutcome,
    StepStatus,
)
from .policy_gate import PlanPolicyGate, ReasonCode
from .repository import PlanRepository
from .step_state import StepExecutionState
from .utils.retry import retry_not_before
from .utils.time import Clock, utc_now

logger = logging.getLogger(__name__)

RETRY_LIMIT_EXCEEDED = "retry_limit_exceeded"


class CycleResult(BaseModel):
    """Counters describing one orchestration pass."""

    activated: int = 0
    steps_started: int = 0
    completed: int = 0
    expired: int = 0
    paused: int = 0
    deferred: int = 0
    conflicts: int = 0


class PlanOrchestrator:
    """Drive plans through activation, step dispatch and completion.

    Each :meth:`run_cycle` handles at most ``max_plans_per_run`` APPROVED
    plans and as many ACTIVE plans, starting at most one step per plan.
    Attempts are reserved and claimed through :class:`StepExecutionState`, so
    concurrent cycles never dispatch the same attempt twice.
    """

    def __init__(
        self,
        repository: PlanRepository,
        lifecycle: PlanLifecycle,
        policy_gate: PlanPolicyGate,
        ledger: PlanLedger,
        evaluator: PlanStateEvaluator,
        step_state: StepExecutionState,
        adapter: ExecutionAdapter,
        plan_types: PlanTypeCatalog,
        config: Optional[OrchestratorConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._lifecycle = lifecycle
        self._gate = policy_gate
        self._ledger = ledger
        self._evaluator = evaluator
        self._step_state = step_state
        self._adapter = adapter
        self._plan_types = plan_types
        self._config = config or OrchestratorConfig()
        self._clock = clock

    def max_retries_for(self, plan_type: str) -> int:
        type_config = self._plan_types.get(plan_type)
        if type_config is not None and type_config.max_retries_per_step is not None:
            return type_config.max_retries_per_step
        return self._config.default_max_retries_per_step

    # ------------------------------------------------------------------
    async def run_cycle(self, tenant_id: str) -> CycleResult:
        result = CycleResult()
        limit = self._config.max_plans_per_run

        approved = await self._repository.list_plans_by_status(
            tenant_id, PlanStatus.APPROVED, limit
        )
        for plan in approved:
            try:
                await self._try_activate(plan, result)
            except TransitionConflict as exc:
                logger.warning(f"Skipping plan {plan.plan_id} this cycle: {exc}")
                result.conflicts += 1

        active = await self._repository.list_plans_by_status(
            tenant_id, PlanStatus.ACTIVE, limit
        )
        for plan in active:
            try:
                await self._advance(plan, result)
            except TransitionConflict as exc:
                logger.warning(f"Skipping plan {plan.plan_id} this cycle: {exc}")
                result.conflicts += 1

        logger.info(f"Cycle for tenant {tenant_id} finished: {result.model_dump()}")
        return result

    async def _try_activate(self, plan: Plan, result: CycleResult) -> None:
        active_ids = await self._repository.list_plan_ids(
            plan.tenant_id, plan.account_id, plan.plan_type, PlanStatus.ACTIVE
        )
        verdict = self._gate.evaluate_can_activate(
            plan, existing_active_plan_ids=active_ids, preconditions_met=True
        )
        if verdict.can_activate:
            await self._lifecycle.transition(plan, PlanStatus.ACTIVE)
            result.activated += 1
            return

        if verdict.has(ReasonCode.CONFLICT_ACTIVE_PLAN):
            conflicting = sorted(pid for pid in active_ids if pid != plan.plan_id)
            logger.warning(
                f"Activation of plan {plan.plan_id} rejected; "
                f"active plans {conflicting} hold {plan.account_id}/{plan.plan_type}"
            )
            await self._ledger.append(
                plan.plan_id,
                plan.tenant_id,
                plan.account_id,
                LedgerEventType.PLAN_ACTIVATION_REJECTED,
                {
                    "plan_type": plan.plan_type,
                    "conflicting_plan_ids": conflicting,
                    "caller": "orchestrator",
                    "reason_code": ReasonCode.CONFLICT_ACTIVE_PLAN.value,
                },
            )
        else:
            codes = [r.code.value for r in verdict.reasons]
            logger.warning(f"Plan {plan.plan_id} not activated: {codes}")

    async def _advance(self, plan: Plan, result: CycleResult) -> None:
        step = plan.next_pending_step()
        if step is None:
            await self._settle(plan, result)
            return

        reserved = await self._step_state.get_current_next_attempt(plan.plan_id, step.step_id)
        if reserved >= self.max_retries_for(plan.plan_type):
            await self._fail_step_and_pause(plan, step, reserved)
            result.paused += 1
            return

        if reserved > 0 and await self._backing_off(plan, step, reserved):
            result.deferred += 1
            return

        attempt = await self._step_state.reserve_next_attempt(plan.plan_id, step.step_id)
        claim = await self._step_state.record_step_started(plan.plan_id, step.step_id, attempt)
        if not claim.claimed:
            logger.debug(
                f"Attempt {attempt} of {plan.plan_id}/{step.step_id} claimed elsewhere"
            )
            return

        started_ms = int(self._clock().timestamp() * 1000)
        trace_id = f"plan_{plan.plan_id}_{step.step_id}_{attempt}_{started_ms}"
        intent_id = await self._adapter.create_intent_from_step(
            plan.tenant_id,
            plan.account_id,
            plan.plan_id,
            step.step_id,
            attempt,
            step,
            trace_id,
        )
        await self._ledger.append(
            plan.plan_id,
            plan.tenant_id,
            plan.account_id,
            LedgerEventType.STEP_STARTED,
            {
                "plan_id": plan.plan_id,
                "step_id": step.step_id,
                "action_type": step.action_type,
                "attempt": attempt,
                "intent_id": intent_id,
                "trace_id": trace_id,
            },
        )
        logger.info(f"Started {plan.plan_id}/{step.step_id} attempt {attempt}")
        result.steps_started += 1

    async def _settle(self, plan: Plan, result: CycleResult) -> None:
        evaluation = self._evaluator.evaluate(plan)
        if isinstance(evaluation, Complete):
            await self._lifecycle.transition(
                plan,
                PlanStatus.COMPLETED,
                completed_at=evaluation.completed_at,
                completion_reason=evaluation.completion_reason,
            )
            result.completed += 1
        elif isinstance(evaluation, Expire):
            await self._lifecycle.transition(
                plan, PlanStatus.EXPIRED, expired_at=evaluation.expired_at
            )
            result.expired += 1

    async def _backing_off(self, plan: Plan, step: PlanStep, reserved: int) -> bool:
        """True while the latest attempt is still running inside its backoff window."""
        base = self._config.retry_backoff_base
        if base is None:
            return False
        latest = await self._step_state.get_attempt(plan.plan_id, step.step_id, reserved)
        if latest is None or latest.status != StepExecutionStatus.STARTED:
            return False
        return self._clock() < retry_not_before(latest.started_at, reserved, base)

    async def _fail_step_and_pause(self, plan: Plan, step: PlanStep, attempts: int) -> None:
        await self._repository.update_step_status(
            plan.tenant_id, plan.account_id, plan.plan_id, step.step_id, StepStatus.FAILED
        )
        try:
            await self._ledger.append(
                plan.plan_id,
                plan.tenant_id,
                plan.account_id,
                LedgerEventType.STEP_FAILED,
                {
                    "plan_id": plan.plan_id,
                    "step_id": step.step_id,
                    "reason": RETRY_LIMIT_EXCEEDED,
                    "attempt": attempts,
                },
            )
        except Exception as exc:
            logger.warning(
                f"Could not record STEP_FAILED for {plan.plan_id}/{step.step_id}: {exc}"
            )
        await self._lifecycle.transition(plan, PlanStatus.PAUSED, reason=RETRY_LIMIT_EXCEEDED)

    # ------------------------------------------------------------------
    async def apply_step_outcome(
        self,
        tenant_id: str,
        account_id: str,
        plan_id: str,
        step_id: str,
        attempt: int,
        outcome: StepOutcome,
        outcome_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[Plan]:
        """Record the executor's result for one attempt.

        Returns the updated plan, or ``None`` when the outcome was ignored
        because the plan is no longer ACTIVE/PAUSED or the attempt already
        has an outcome.
        """
        outcome = StepOutcome(outcome)
        plan = await self._repository.get_plan(tenant_id, account_id, plan_id)
        if plan is None:
            raise PlanNotFound(plan_id)
        if plan.status not in (PlanStatus.ACTIVE, PlanStatus.PAUSED):
            logger.debug(f"Ignoring outcome for plan {plan_id} in status {plan.status.value}")
            return None

        applied = await self._step_state.update_step_outcome(
            plan_id,
            step_id,
            attempt,
            outcome.execution_status,
            outcome_id=outcome_id,
            error_message=error_message,
        )
        if not applied:
            return None

        plan = await self._repository.update_step_status(
            tenant_id, account_id, plan_id, step_id, outcome.step_status
        )
        data = {"plan_id": plan_id, "step_id": step_id, "attempt": attempt}
        if outcome == StepOutcome.FAILED:
            data["reason"] = error_message or "failed"
        elif outcome == StepOutcome.SKIPPED:
            data["reason"] = error_message or "skipped"
        if outcome_id:
            data["outcome_id"] = outcome_id
        await self._ledger.append(
            plan_id, tenant_id, account_id, outcome.ledger_event, data
        )

        if plan.status != PlanStatus.ACTIVE:
            return plan
        try:
            evaluation = self._evaluator.evaluate(plan)
            if isinstance(evaluation, Complete):
                plan = await self._lifecycle.transition(
                    plan,
                    PlanStatus.COMPLETED,
                    completed_at=evaluation.completed_at,
                    completion_reason=evaluation.completion_reason,
                )
            elif isinstance(evaluation, Expire):
                plan = await self._lifecycle.transition(
                    plan, PlanStatus.EXPIRED, expired_at=evaluation.expired_at
                )
        except TransitionConflict as exc:
            logger.info(f"Plan {plan_id} moved concurrently after outcome: {exc}")
            plan = await self._repository.get_plan(tenant_id, account_id, plan_id)
        return plan

    async def list_plan_attempts(self, plan: Plan) -> List[dict]:
        """Attempt history for every step of ``plan``."""
        history = []
        for step in plan.steps:
            for record in await self._step_state.list_attempts(plan.plan_id, step.step_id):
                history.append(record.model_dump(mode="json"))
        return history
