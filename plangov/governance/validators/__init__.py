"""Governance validators, in the order the gateway runs them."""

from __future__ import annotations

from typing import List

from ...config import GovernanceConfig
from .base import NOT_APPLICABLE, Validator
from .compliance import ComplianceValidator
from .contradiction import ContradictionValidator, contradicts
from .freshness import FreshnessValidator
from .grounding import GroundingValidator


def default_validators(config: GovernanceConfig) -> List[Validator]:
    """Freshness, Grounding, Contradiction, Compliance; the order is part of the audit trail."""
    return [
        FreshnessValidator(config),
        GroundingValidator(config),
        ContradictionValidator(config),
        ComplianceValidator(config),
    ]


__all__ = [
    "NOT_APPLICABLE",
    "ComplianceValidator",
    "ContradictionValidator",
    "FreshnessValidator",
    "GroundingValidator",
    "Validator",
    "contradicts",
    "default_validators",
]
