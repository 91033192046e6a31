"""Block proposals that contradict the canonical snapshot."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from ...config import ContradictionRule, DateWindowRule, EqRule, GovernanceConfig, NoBackwardRule
from ...models import Verdict
from ...utils.time import parse_datetime
from ..models import ValidatorContext, ValidatorResult
from .base import NOT_APPLICABLE


def _as_datetime(value: Any) -> Optional[datetime]:
    try:
        return parse_datetime(value if isinstance(value, datetime) else str(value))
    except ValueError:
        return None


def contradicts(rule: ContradictionRule, snapshot_value: Any, proposed_value: Any) -> bool:
    """Whether ``proposed_value`` contradicts ``snapshot_value`` under ``rule``.

    Missing values or values the rule cannot interpret never contradict.
    """
    if snapshot_value is None or proposed_value is None:
        return False
    if isinstance(rule, EqRule):
        return type(snapshot_value) is not type(proposed_value) or snapshot_value != proposed_value
    if isinstance(rule, NoBackwardRule):
        try:
            current = rule.ordering.index(str(snapshot_value))
            proposed = rule.ordering.index(str(proposed_value))
        except ValueError:
            return False
        return proposed < current
    if isinstance(rule, DateWindowRule):
        left = _as_datetime(snapshot_value)
        right = _as_datetime(proposed_value)
        if left is None or right is None:
            return False
        delta_days = abs((right - left).total_seconds()) / 86400
        return delta_days > rule.max_days_delta
    raise TypeError(f"Unknown contradiction rule: {rule!r}")


class ContradictionValidator:
    name = "contradiction"

    def __init__(self, config: GovernanceConfig) -> None:
        self._config = config

    def validate(self, context: ValidatorContext) -> ValidatorResult:
        payload = context.step_or_proposal
        snapshot = context.canonical_snapshot
        if payload is None or snapshot is None:
            return ValidatorResult(
                validator=self.name, result=Verdict.ALLOW, reason=NOT_APPLICABLE
            )

        for entry in self._config.contradiction_fields:
            snapshot_value = snapshot.get(entry.field)
            proposed_value = payload.get(entry.field)
            if contradicts(entry.rule, snapshot_value, proposed_value):
                return ValidatorResult(
                    validator=self.name,
                    result=Verdict.BLOCK,
                    reason="CONTRADICTION",
                    details={
                        "field": entry.field,
                        "rule": entry.rule.kind,
                        "snapshot_value": snapshot_value,
                        "step_value": proposed_value,
                    },
                )
        return ValidatorResult(validator=self.name, result=Verdict.ALLOW)
