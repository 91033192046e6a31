"""Compute whether a plan should complete, expire or stay as it is."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from .models import SATISFIED_STEP_STATUSES, CompletionReason, Plan
from .utils.time import Clock, utc_now


class Complete(BaseModel):
    action: Literal["COMPLETE"] = "COMPLETE"
    completion_reason: CompletionReason
    completed_at: datetime


class Expire(BaseModel):
    action: Literal["EXPIRE"] = "EXPIRE"
    expired_at: datetime


class NoChange(BaseModel):
    action: Literal["NO_CHANGE"] = "NO_CHANGE"


Evaluation = Annotated[Union[Complete, Expire, NoChange], Field(discriminator="action")]


class PlanStateEvaluator:
    """Pure function of a plan snapshot and the current time.

    Expiry wins over completion. A FAILED step never auto-completes a plan;
    it waits for an operator to pause, resume or abort.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    def evaluate(self, plan: Plan, now: Optional[datetime] = None) -> Evaluation:
        now = now or self._clock()
        if now >= plan.expires_at:
            return Expire(expired_at=now)
        if plan.steps and all(s.status in SATISFIED_STEP_STATUSES for s in plan.steps):
            return Complete(
                completion_reason=CompletionReason.ALL_STEPS_DONE, completed_at=now
            )
        return NoChange()
