"""Exception types raised by plangov services."""

from __future__ import annotations

from typing import Optional


class PlangovError(Exception):
    """Base class for plangov errors."""


class ConditionFailed(PlangovError):
    """A conditional store write found the item in an unexpected state."""

    def __init__(self, key: str, condition: object | None = None) -> None:
        self.key = key
        self.condition = condition
        super().__init__(f"Condition failed for key {key}: {condition!r}")


class InvalidTransition(PlangovError, ValueError):
    """Requested plan status change is not in the transition table."""

    def __init__(self, plan_id: str, from_status: str, to_status: str) -> None:
        self.plan_id = plan_id
        self.from_status = from_status
        self.to_status = to_status
        if from_status == to_status:
            message = f"same status ({from_status}) is not a valid transition"
        else:
            message = f"invalid transition {from_status} -> {to_status}"
        super().__init__(f"Plan {plan_id}: {message}")


class TransitionConflict(PlangovError):
    """Plan status changed underneath a transition; re-read before retrying."""

    def __init__(self, plan_id: str, expected_status: str, to_status: str) -> None:
        self.plan_id = plan_id
        self.expected_status = expected_status
        self.to_status = to_status
        super().__init__(
            f"Plan {plan_id} is no longer {expected_status}; "
            f"transition to {to_status} lost a concurrent update"
        )


class UnauditedTransition(PlangovError):
    """Status was written but the ledger event was not; needs reconciliation."""

    def __init__(self, plan_id: str, from_status: str, to_status: str) -> None:
        self.plan_id = plan_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Plan {plan_id} moved {from_status} -> {to_status} but the ledger "
            "append failed"
        )


class PlanNotFound(PlangovError, LookupError):
    """No plan stored under the given tenant/account/plan id."""

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__(f"Plan not found: {plan_id}")


class PlanNotMutable(PlangovError):
    """Steps and constraints may only change while a plan is DRAFT."""

    def __init__(self, plan_id: str, status: Optional[str] = None) -> None:
        self.plan_id = plan_id
        self.status = status
        super().__init__(
            f"Plan {plan_id} is not in DRAFT; steps/constraints are immutable. "
            f"Current status: {status}."
        )


class StepAttemptNotFound(PlangovError, LookupError):
    """An outcome was reported for an attempt that was never claimed."""

    def __init__(self, plan_id: str, step_id: str, attempt: int) -> None:
        self.plan_id = plan_id
        self.step_id = step_id
        self.attempt = attempt
        super().__init__(f"No attempt {attempt} recorded for {plan_id}/{step_id}")


class UnsupportedPlanType(PlangovError, ValueError):
    """Plan type has no configuration, or no allowed steps."""


class StepNotFound(PlangovError, LookupError):
    """Plan has no step with the given id."""

    def __init__(self, plan_id: str, step_id: str) -> None:
        self.plan_id = plan_id
        self.step_id = step_id
        super().__init__(f"Plan {plan_id} has no step {step_id}")
