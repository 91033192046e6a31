"""Field guard: restricted fields and prohibited action types."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ...config import GovernanceConfig
from ...models import Verdict
from ..models import ValidatorContext, ValidatorResult
from .base import NOT_APPLICABLE


class ComplianceValidator:
    name = "compliance"

    def __init__(self, config: GovernanceConfig) -> None:
        self._config = config

    def _restricted_field(self, payload: Dict[str, Any]) -> Optional[str]:
        for field in self._config.restricted_fields:
            if field in payload:
                return field
        return None

    def _block(self, reason: str, field_or_action: str) -> ValidatorResult:
        return ValidatorResult(
            validator=self.name,
            result=Verdict.BLOCK,
            reason=reason,
            details={"field_or_action": field_or_action},
        )

    def validate(self, context: ValidatorContext) -> ValidatorResult:
        step = context.step_or_proposal
        writeback = context.writeback_payload
        if step is None and writeback is None:
            return ValidatorResult(
                validator=self.name, result=Verdict.ALLOW, reason=NOT_APPLICABLE
            )

        if step is not None:
            field = self._restricted_field(step)
            if field:
                return self._block("RESTRICTED_FIELD", field)
            action_type = step.get("action_type")
            if action_type and action_type in self._config.prohibited_action_types:
                return self._block("PROHIBITED_ACTION", action_type)

        if writeback is not None:
            field = self._restricted_field(writeback)
            if field:
                return self._block("RESTRICTED_FIELD", field)

        return ValidatorResult(validator=self.name, result=Verdict.ALLOW)
