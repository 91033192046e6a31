"""Execution adapter interface: hands claimed steps to the executing side."""

from __future__ import annotations

import abc
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

from pydantic import BaseModel, Field

from ..models import PlanStep
from ..utils.time import utc_now


class StepIntent(BaseModel):
    """A claimed step attempt waiting to be executed."""

    intent_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    account_id: str
    plan_id: str
    step_id: str
    attempt: int
    action_type: str
    constraints: Dict[str, Any] = Field(default_factory=dict)
    trace_id: str
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def action_ref(self) -> str:
        """Stable reference to the attempt this intent executes."""
        return f"{self.plan_id}#{self.step_id}#{self.attempt}"

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> "StepIntent":
        return cls.model_validate_json(raw)


class ExecutionAdapter(metaclass=abc.ABCMeta):
    """Abstract base for intent queues.

    Outcomes are reported back separately through
    :meth:`plangov.orchestrator.PlanOrchestrator.apply_step_outcome`.
    """

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    async def create_intent_from_step(
        self,
        tenant_id: str,
        account_id: str,
        plan_id: str,
        step_id: str,
        attempt: int,
        step: PlanStep,
        trace_id: str,
    ) -> str:
        """Enqueue an intent for one step attempt and return its id."""
        intent = StepIntent(
            tenant_id=tenant_id,
            account_id=account_id,
            plan_id=plan_id,
            step_id=step_id,
            attempt=attempt,
            action_type=step.action_type,
            constraints=step.constraints,
            trace_id=trace_id,
        )
        await self.publish(intent)
        return intent.intent_id

    @abc.abstractmethod
    async def publish(self, intent: StepIntent) -> None:
        """Send an intent to the queue for its action type."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, action_type: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[StepIntent]:
        """Yield intents queued for ``action_type``.

        Args:
            action_type: Step action type whose queue to read
            lifespan: Maximum time in seconds to keep reading. If None, runs indefinitely.
        """
        raise NotImplementedError
