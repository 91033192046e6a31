"""Core plan, step and ledger models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator

from .utils.time import parse_datetime, utc_now


class PlanStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PLAN_STATUSES


TERMINAL_PLAN_STATUSES = frozenset(
    {PlanStatus.COMPLETED, PlanStatus.ABORTED, PlanStatus.EXPIRED}
)


class StepStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


# Steps in these states satisfy a dependency and count toward completion.
SATISFIED_STEP_STATUSES = frozenset({StepStatus.DONE, StepStatus.SKIPPED})


class CompletionReason(str, Enum):
    OBJECTIVE_MET = "objective_met"
    ALL_STEPS_DONE = "all_steps_done"


class PlanStep(BaseModel):
    """One typed action within a plan."""

    step_id: str
    action_type: str
    status: StepStatus = StepStatus.PENDING
    sequence: Optional[int] = None
    dependencies: List[str] = Field(default_factory=list)
    constraints: Dict[str, Any] = Field(default_factory=dict)


class Plan(BaseModel):
    """A bounded, ordered set of steps pursuing one objective for one account."""

    plan_id: str
    plan_type: str
    tenant_id: str
    account_id: str
    objective: str
    status: PlanStatus = PlanStatus.DRAFT
    steps: List[PlanStep] = Field(default_factory=list)
    constraints: Dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    completion_reason: Optional[CompletionReason] = None
    aborted_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    version: int = 0

    @field_validator(
        "expires_at",
        "created_at",
        "updated_at",
        "approved_at",
        "completed_at",
        "aborted_at",
        "expired_at",
    )
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return parse_datetime(value) if value is not None else None

    def get_step(self, step_id: str) -> Optional[PlanStep]:
        """Return the step with ``step_id`` if present."""
        return next((s for s in self.steps if s.step_id == step_id), None)

    def next_pending_step(self) -> Optional[PlanStep]:
        """First PENDING step, by sequence, whose dependencies are all satisfied.

        Steps without a sequence sort last; ties keep declaration order.
        """
        by_id = {s.step_id: s for s in self.steps}
        ordered = sorted(self.steps, key=lambda s: (s.sequence is None, s.sequence or 0))
        for step in ordered:
            if step.status != StepStatus.PENDING:
                continue
            if all(
                dep in by_id and by_id[dep].status in SATISFIED_STEP_STATUSES
                for dep in step.dependencies
            ):
                return step
        return None


class StepExecutionStatus(str, Enum):
    STARTED = "STARTED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class StepExecutionRecord(BaseModel):
    """Record of one numbered attempt at a step."""

    plan_id: str
    step_id: str
    attempt: int
    status: StepExecutionStatus = StepExecutionStatus.STARTED
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcome_id: Optional[str] = None
    error_message: Optional[str] = None


class StepAttempt(BaseModel):
    """Result of trying to claim an attempt number."""

    attempt: int
    claimed: bool


class StepOutcome(str, Enum):
    """Outcome reported back by the execution adapter."""

    DONE = "DONE"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def execution_status(self) -> StepExecutionStatus:
        return {
            StepOutcome.DONE: StepExecutionStatus.SUCCEEDED,
            StepOutcome.FAILED: StepExecutionStatus.FAILED,
            StepOutcome.SKIPPED: StepExecutionStatus.SKIPPED,
        }[self]

    @property
    def step_status(self) -> StepStatus:
        return StepStatus(self.value)

    @property
    def ledger_event(self) -> "LedgerEventType":
        return {
            StepOutcome.DONE: LedgerEventType.STEP_COMPLETED,
            StepOutcome.FAILED: LedgerEventType.STEP_FAILED,
            StepOutcome.SKIPPED: LedgerEventType.STEP_SKIPPED,
        }[self]


class LedgerEventType(str, Enum):
    PLAN_CREATED = "PLAN_CREATED"
    PLAN_APPROVED = "PLAN_APPROVED"
    PLAN_ACTIVATED = "PLAN_ACTIVATED"
    PLAN_PAUSED = "PLAN_PAUSED"
    PLAN_RESUMED = "PLAN_RESUMED"
    PLAN_COMPLETED = "PLAN_COMPLETED"
    PLAN_ABORTED = "PLAN_ABORTED"
    PLAN_EXPIRED = "PLAN_EXPIRED"
    PLAN_ACTIVATION_REJECTED = "PLAN_ACTIVATION_REJECTED"
    STEP_STARTED = "STEP_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_SKIPPED = "STEP_SKIPPED"
    STEP_FAILED = "STEP_FAILED"
    VALIDATOR_RUN = "VALIDATOR_RUN"
    VALIDATOR_RUN_SUMMARY = "VALIDATOR_RUN_SUMMARY"
    BUDGET_RESERVE = "BUDGET_RESERVE"
    BUDGET_BLOCK = "BUDGET_BLOCK"
    BUDGET_WARN = "BUDGET_WARN"


class LedgerEntry(BaseModel):
    """Append-only audit record for a plan."""

    entry_id: str
    plan_id: str
    tenant_id: str
    account_id: str
    event_type: LedgerEventType
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)


class Verdict(str, Enum):
    """Governance decision, ordered from most to least permissive."""

    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"

    @property
    def severity(self) -> int:
        return _VERDICT_SEVERITY[self]


_VERDICT_SEVERITY = {Verdict.ALLOW: 0, Verdict.WARN: 1, Verdict.BLOCK: 2}


def worst_verdict(verdicts: Iterable[Verdict]) -> Verdict:
    """BLOCK if any BLOCK, else WARN if any WARN, else ALLOW."""
    return max(verdicts, key=lambda v: v.severity, default=Verdict.ALLOW)
