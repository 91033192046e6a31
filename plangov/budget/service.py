"""Reserve-before-spend admission control with hard/soft caps."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..ledger import PlanLedger
from ..models import LedgerEventType, Verdict
from .catalog import BudgetCatalog, effective_hard_cap, effective_soft_cap, infer_period
from .models import BudgetConfig, BudgetResult, ReserveRequest
from .usage import BudgetUsageStore

logger = logging.getLogger(__name__)

_LEDGER_EVENT = {
    Verdict.ALLOW: LedgerEventType.BUDGET_RESERVE,
    Verdict.WARN: LedgerEventType.BUDGET_WARN,
    Verdict.BLOCK: LedgerEventType.BUDGET_BLOCK,
}


def _matched(configs: List[BudgetConfig]) -> List[Dict[str, Any]]:
    return [c.scope.model_dump(exclude_none=True) for c in configs]


class BudgetService:
    """Admit or refuse spend for a scope, period and cost class.

    Decisions are cached per ``operation_id``: a repeated request returns the
    first decision without touching usage again. Configuration gaps fail
    closed with BLOCK.
    """

    def __init__(
        self,
        catalog: BudgetCatalog,
        usage: BudgetUsageStore,
        ledger: PlanLedger,
        default_plan_id: str = "_budget",
        default_account_id: str = "",
    ) -> None:
        self._catalog = catalog
        self._usage = usage
        self._ledger = ledger
        self._default_plan_id = default_plan_id
        self._default_account_id = default_account_id

    async def reserve(self, request: ReserveRequest) -> BudgetResult:
        scope, cost_class = request.scope, request.cost_class
        period = infer_period(request.period_key)
        if period is None:
            return BudgetResult(
                result=Verdict.BLOCK,
                reason="INVALID_PERIOD_KEY",
                details={"period_key": request.period_key},
            )

        configs = self._catalog.matching(scope, period)
        if not configs:
            return BudgetResult(
                result=Verdict.BLOCK,
                reason="NO_APPLICABLE_CONFIG",
                details={
                    "scope": scope.model_dump(exclude_none=True),
                    "cost_class": cost_class.value,
                    "usage_before": 0,
                    "matched_configs": [],
                },
            )

        stored = await self._usage.get_stored_outcome(
            scope, request.period_key, cost_class, request.operation_id
        )
        if stored is not None:
            return stored

        if not await self._usage.claim_operation(
            scope, request.period_key, cost_class, request.operation_id
        ):
            stored = await self._usage.get_stored_outcome(
                scope, request.period_key, cost_class, request.operation_id
            )
            if stored is not None:
                return stored
            logger.info(f"Budget operation {request.operation_id} still in progress")
            return BudgetResult(
                result=Verdict.BLOCK,
                reason="OPERATION_IN_PROGRESS",
                details={"operation_id": request.operation_id},
            )

        try:
            result = await self._decide(request, configs)
        except Exception:
            logger.warning(f"Budget operation {request.operation_id} failed; releasing its claim")
            await self._usage.release_operation(
                scope, request.period_key, cost_class, request.operation_id
            )
            raise
        await self._record(request, result)
        return result

    async def _decide(self, request: ReserveRequest, configs: List[BudgetConfig]) -> BudgetResult:
        scope, cost_class = request.scope, request.cost_class
        cap_hard = effective_hard_cap(configs, cost_class)
        cap_soft = effective_soft_cap(configs, cost_class)
        outcome = await self._usage.reserve(
            scope, request.period_key, cost_class, request.amount, cap_hard
        )

        details: Dict[str, Any] = {
            "cap_hard": cap_hard,
            "cap_soft": cap_soft,
            "matched_configs": _matched(configs),
        }
        if not outcome.success:
            result = BudgetResult(
                result=Verdict.BLOCK,
                reason="HARD_CAP_EXCEEDED",
                details={"usage_before": outcome.usage_after, **details},
            )
        else:
            over_soft = (
                cap_hard is not None
                and cap_soft is not None
                and outcome.usage_after > cap_soft
            )
            result = BudgetResult(
                result=Verdict.WARN if over_soft else Verdict.ALLOW,
                reason="SOFT_CAP_EXCEEDED" if over_soft else None,
                details={
                    "usage_before": outcome.usage_after - request.amount,
                    "usage_after": outcome.usage_after,
                    **details,
                },
            )

        await self._usage.set_stored_outcome(
            scope, request.period_key, cost_class, request.operation_id, result
        )
        return result

    async def _record(self, request: ReserveRequest, result: BudgetResult) -> None:
        scope = request.scope
        data = {
            "scope": scope.model_dump(exclude_none=True),
            "period_key": request.period_key,
            "cost_class": request.cost_class.value,
            "operation_id": request.operation_id,
            "amount": request.amount,
            "result": result.result.value,
            "reason": result.reason,
            **result.details,
        }
        try:
            await self._ledger.append(
                scope.plan_id or self._default_plan_id,
                scope.tenant_id,
                scope.account_id or self._default_account_id,
                _LEDGER_EVENT[result.result],
                data,
            )
        except Exception as exc:
            logger.warning(
                f"Budget ledger append failed for operation {request.operation_id}: {exc}"
            )

    async def current_usage(self, request: ReserveRequest) -> Optional[int]:
        """Current usage for the request's scope, period and cost class."""
        usage = await self._usage.get_usage(request.scope, request.period_key)
        return usage.get(request.cost_class)
