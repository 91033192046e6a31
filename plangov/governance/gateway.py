"""Run the governance validators and record every verdict in the ledger."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from ..ledger import PlanLedger
from ..models import LedgerEventType, Verdict, worst_verdict
from ..utils.time import isoformat
from .models import GatewayResult, ValidatorContext, ValidatorResult
from .validators import Validator

logger = logging.getLogger(__name__)

LEDGER_WRITE_FAILED = "LEDGER_WRITE_FAILED"


class ValidatorGateway:
    """Ordered validator runner with a fail-closed audit rule.

    Each validator's result is appended as ``VALIDATOR_RUN`` (best-effort).
    The ``VALIDATOR_RUN_SUMMARY`` append is not: if it fails the aggregate is
    forced to BLOCK, since an unaudited decision must not permit anything.
    """

    def __init__(self, ledger: PlanLedger, validators: Sequence[Validator]) -> None:
        self._ledger = ledger
        self._validators = list(validators)

    @property
    def validator_names(self) -> List[str]:
        return [v.name for v in self._validators]

    def _envelope(self, context: ValidatorContext) -> Dict[str, Any]:
        return {
            "validation_run_id": context.validation_run_id,
            "target_id": context.target_id,
            "snapshot_id": context.snapshot_id,
            "choke_point": context.choke_point.value,
            "evaluation_time": isoformat(context.evaluation_time),
            "tenant_id": context.tenant_id,
            "account_id": context.account_id,
            "plan_id": context.plan_id,
            "step_id": context.step_id,
        }

    async def run(self, context: ValidatorContext) -> GatewayResult:
        plan_id = context.plan_id or f"_validator_{context.validation_run_id}"
        account_id = context.account_id or ""
        envelope = self._envelope(context)

        results: List[ValidatorResult] = []
        for validator in self._validators:
            result = validator.validate(context)
            results.append(result)
            try:
                await self._ledger.append(
                    plan_id,
                    context.tenant_id,
                    account_id,
                    LedgerEventType.VALIDATOR_RUN,
                    {**envelope, **result.model_dump(mode="json")},
                )
            except Exception as exc:
                logger.warning(
                    f"VALIDATOR_RUN append failed for {result.validator} "
                    f"(run {context.validation_run_id}): {exc}"
                )

        aggregate = worst_verdict(r.result for r in results)
        try:
            await self._ledger.append(
                plan_id,
                context.tenant_id,
                account_id,
                LedgerEventType.VALIDATOR_RUN_SUMMARY,
                {
                    **envelope,
                    "aggregate": aggregate.value,
                    "results": [r.model_dump(mode="json") for r in results],
                },
            )
        except Exception as exc:
            logger.error(
                f"VALIDATOR_RUN_SUMMARY append failed (run {context.validation_run_id}); "
                f"forcing BLOCK: {exc}"
            )
            results.append(
                ValidatorResult(
                    validator="gateway",
                    result=Verdict.BLOCK,
                    reason=LEDGER_WRITE_FAILED,
                    details={},
                )
            )
            aggregate = Verdict.BLOCK

        logger.info(
            f"Validation run {context.validation_run_id} at "
            f"{context.choke_point.value}: {aggregate.value}"
        )
        return GatewayResult(aggregate=aggregate, results=results)
