"""Block or warn on data sources older than their TTLs."""

from __future__ import annotations

from typing import Any, Dict, List

from ...config import GovernanceConfig
from ...models import Verdict, worst_verdict
from ..models import ValidatorContext, ValidatorResult
from .base import NOT_APPLICABLE


class FreshnessValidator:
    """Compare each source's age with its soft and hard TTL.

    ``age <= soft`` allows, ``soft < age <= hard`` warns and ``age > hard``
    blocks. The worst source decides the result.
    """

    name = "freshness"

    def __init__(self, config: GovernanceConfig) -> None:
        self._config = config

    def validate(self, context: ValidatorContext) -> ValidatorResult:
        if not context.data_sources:
            return ValidatorResult(
                validator=self.name, result=Verdict.ALLOW, reason=NOT_APPLICABLE
            )

        evaluated: List[Dict[str, Any]] = []
        for source in context.data_sources:
            age = context.evaluation_time - source.last_updated
            hard_ttl, soft_ttl = self._config.ttl_for_source(source.source_id)
            if age > hard_ttl:
                verdict = Verdict.BLOCK
            elif age > soft_ttl:
                verdict = Verdict.WARN
            else:
                verdict = Verdict.ALLOW
            evaluated.append(
                {
                    "source_id": source.source_id,
                    "age_seconds": age.total_seconds(),
                    "soft_ttl_seconds": soft_ttl.total_seconds(),
                    "hard_ttl_seconds": hard_ttl.total_seconds(),
                    "result": verdict,
                }
            )

        worst = worst_verdict(e["result"] for e in evaluated)
        worst_source = next(
            (e["source_id"] for e in evaluated if e["result"] == worst), None
        )
        return ValidatorResult(
            validator=self.name,
            result=worst,
            reason="DATA_STALE" if worst != Verdict.ALLOW else None,
            details={
                "evaluated_sources": [
                    {**e, "result": e["result"].value} for e in evaluated
                ],
                "worst_result": worst.value,
                "worst_source_id": worst_source if worst != Verdict.ALLOW else None,
            },
        )
