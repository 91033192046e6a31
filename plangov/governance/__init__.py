"""Governance checks: validator gateway, validators and outcome capture."""

from .gateway import ValidatorGateway
from .models import ChokePoint, GatewayResult, ValidatorContext, ValidatorResult
from .outcomes import DuplicateOutcome, OutcomeEvent, OutcomesCapture

__all__ = [
    "ChokePoint",
    "DuplicateOutcome",
    "GatewayResult",
    "OutcomeEvent",
    "OutcomesCapture",
    "ValidatorContext",
    "ValidatorGateway",
    "ValidatorResult",
]
