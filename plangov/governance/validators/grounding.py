"""Require proposed actions to cite well-formed evidence."""

from __future__ import annotations

import json
from typing import Any, List, Optional

from ...config import GovernanceConfig
from ...models import Verdict
from ..models import ValidatorContext, ValidatorResult, is_evidence_reference
from .base import NOT_APPLICABLE


def _canonical(ref: Any) -> str:
    return json.dumps(ref, sort_keys=True, default=str)


def _evidence(payload: dict) -> Optional[List[Any]]:
    for key in ("evidence", "evidence_refs"):
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return None


class GroundingValidator:
    name = "grounding"

    def __init__(self, config: GovernanceConfig) -> None:
        self._config = config

    def _fail(self, reason: str, details: Optional[dict] = None) -> ValidatorResult:
        return ValidatorResult(
            validator=self.name,
            result=Verdict(self._config.grounding_missing_action),
            reason=reason,
            details=details,
        )

    def validate(self, context: ValidatorContext) -> ValidatorResult:
        payload = context.step_or_proposal
        if payload is None:
            return ValidatorResult(
                validator=self.name, result=Verdict.ALLOW, reason=NOT_APPLICABLE
            )

        evidence = _evidence(payload)
        if not evidence:
            return self._fail(
                "MISSING_EVIDENCE",
                {"expected": "evidence or evidence_refs list with at least one reference"},
            )
        if not all(is_evidence_reference(ref) for ref in evidence):
            return self._fail(
                "INVALID_EVIDENCE_SHAPE",
                {"expected": "source_type+source_id | ledger_event_id | record_locator"},
            )

        whitelist = context.evidence_references
        if whitelist:
            allowed = {_canonical(ref) for ref in whitelist}
            missing = [ref for ref in evidence if _canonical(ref) not in allowed]
            if missing:
                return self._fail("EVIDENCE_NOT_IN_WHITELIST", {"unlisted": missing})

        return ValidatorResult(validator=self.name, result=Verdict.ALLOW)
