"""plangov - governed, auditable execution of multi-step account plans."""

from .commands import CommandResult, PlanCommands
from .config import PlangovConfig, load_config
from .errors import (
    ConditionFailed,
    InvalidTransition,
    PlangovError,
    PlanNotFound,
    PlanNotMutable,
    TransitionConflict,
    UnauditedTransition,
)
from .evaluator import PlanStateEvaluator
from .ledger import PlanLedger
from .lifecycle import PlanLifecycle
from .models import (
    LedgerEntry,
    LedgerEventType,
    Plan,
    PlanStatus,
    PlanStep,
    StepOutcome,
    StepStatus,
    Verdict,
)
from .orchestrator import CycleResult, PlanOrchestrator
from .policy_gate import PlanPolicyGate
from .repository import PlanRepository
from .services import Services, build_services
from .step_state import StepExecutionState
from .store import get_store

__version__ = "0.1.0"

__all__ = [
    "CommandResult",
    "ConditionFailed",
    "CycleResult",
    "InvalidTransition",
    "LedgerEntry",
    "LedgerEventType",
    "Plan",
    "PlanCommands",
    "PlanLedger",
    "PlanLifecycle",
    "PlanNotFound",
    "PlanNotMutable",
    "PlanOrchestrator",
    "PlanPolicyGate",
    "PlanRepository",
    "PlanStateEvaluator",
    "PlanStatus",
    "PlanStep",
    "PlangovConfig",
    "PlangovError",
    "Services",
    "StepExecutionState",
    "StepOutcome",
    "StepStatus",
    "TransitionConflict",
    "UnauditedTransition",
    "Verdict",
    "build_services",
    "get_store",
    "load_config",
]
