from __future__ import annotations

from typing import Protocol

from ..models import ValidatorContext, ValidatorResult

NOT_APPLICABLE = "NOT_APPLICABLE"


class Validator(Protocol):
    """A single governance check over a validation context."""

    name: str

    def validate(self, context: ValidatorContext) -> ValidatorResult:
        """Return ALLOW, WARN or BLOCK with an optional reason code."""
