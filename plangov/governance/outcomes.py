"""Append-only capture of plan-linked and downstream outcome events."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..errors import ConditionFailed
from ..store import ItemAbsent, KeyValueStore
from ..utils.time import Clock, isoformat, utc_now

logger = logging.getLogger(__name__)

# Events that may arrive more than once and must be stored only once per idempotency key.
KEY_EVENTS = frozenset(
    {"ACTION_APPROVED", "ACTION_REJECTED", "PLAN_COMPLETED", "PLAN_ABORTED", "PLAN_EXPIRED"}
)


class OutcomeSource(str, Enum):
    HUMAN = "HUMAN"
    POLICY = "POLICY"
    ORCHESTRATOR = "ORCHESTRATOR"
    CONNECTOR = "CONNECTOR"
    DOWNSTREAM = "DOWNSTREAM"


class PlanOutcomeInput(BaseModel):
    tenant_id: str
    plan_id: str
    event_type: Literal[
        "ACTION_APPROVED",
        "ACTION_REJECTED",
        "SELLER_EDIT",
        "EXECUTION_SUCCESS",
        "EXECUTION_FAILURE",
        "PLAN_COMPLETED",
        "PLAN_ABORTED",
        "PLAN_EXPIRED",
    ]
    source: OutcomeSource
    account_id: Optional[str] = None
    step_id: Optional[str] = None
    ledger_entry_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def partition(self) -> str:
        return f"tenant#{self.tenant_id}#plan#{self.plan_id}"

    @property
    def dedupe_owner(self) -> str:
        return self.plan_id


class DownstreamOutcomeInput(BaseModel):
    tenant_id: str
    account_id: str
    event_type: Literal["DOWNSTREAM_WIN", "DOWNSTREAM_LOSS"]
    source: Literal[OutcomeSource.DOWNSTREAM] = OutcomeSource.DOWNSTREAM
    plan_id: Optional[str] = None
    data: Dict[str, Any]

    @field_validator("data")
    @classmethod
    def _requires_opportunity(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if value.get("opportunity_id") is None:
            raise ValueError("data.opportunity_id required for DOWNSTREAM_* outcome")
        return value

    @property
    def partition(self) -> str:
        return f"tenant#{self.tenant_id}#account#{self.account_id}"

    @property
    def dedupe_owner(self) -> str:
        return self.account_id


OutcomeInput = Annotated[
    Union[PlanOutcomeInput, DownstreamOutcomeInput], Field(discriminator="event_type")
]


class OutcomeEvent(BaseModel):
    outcome_id: str
    tenant_id: str
    event_type: str
    source: OutcomeSource
    timestamp: datetime
    account_id: Optional[str] = None
    plan_id: Optional[str] = None
    step_id: Optional[str] = None
    ledger_entry_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class DuplicateOutcome(BaseModel):
    """Returned when an earlier writer already stored this key event."""

    duplicate: Literal[True] = True
    outcome_id: str


class OutcomesCapture:
    """Write-only outcome log with idempotent key events.

    A key event carrying ``data.idempotency_key`` first claims a dedupe
    record (create-if-absent). Only the claimant stores the event; later
    callers get the claimant's ``outcome_id`` back.
    """

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    @staticmethod
    def _dedupe_key(
        payload: Union[PlanOutcomeInput, DownstreamOutcomeInput], idempotency_key: str
    ) -> str:
        return (
            f"outcome_dedupe#tenant#{payload.tenant_id}#plan#{payload.dedupe_owner}"
            f"#type#{payload.event_type}#idemp#{idempotency_key}"
        )

    async def append(
        self, payload: Union[PlanOutcomeInput, DownstreamOutcomeInput]
    ) -> Union[OutcomeEvent, DuplicateOutcome]:
        outcome_id = uuid.uuid4().hex
        idempotency_key = payload.data.get("idempotency_key")

        if payload.event_type in KEY_EVENTS and idempotency_key:
            dedupe_key = self._dedupe_key(payload, str(idempotency_key))
            existing = await self._store.get(dedupe_key)
            if existing:
                return DuplicateOutcome(outcome_id=existing["outcome_id"])
            try:
                await self._store.put(
                    dedupe_key, {"outcome_id": outcome_id}, condition=ItemAbsent()
                )
            except ConditionFailed:
                existing = await self._store.get(dedupe_key) or {}
                logger.debug(f"Outcome {dedupe_key} captured concurrently")
                return DuplicateOutcome(outcome_id=existing.get("outcome_id", outcome_id))

        event = OutcomeEvent(
            outcome_id=outcome_id,
            tenant_id=payload.tenant_id,
            event_type=payload.event_type,
            source=payload.source,
            timestamp=self._clock(),
            account_id=payload.account_id,
            plan_id=payload.plan_id,
            step_id=getattr(payload, "step_id", None),
            ledger_entry_id=getattr(payload, "ledger_entry_id", None),
            data=payload.data,
        )
        sort_key = f"{isoformat(event.timestamp)}#{outcome_id}"
        item = event.model_dump(mode="json")
        item["_index"] = {"outcomes": [payload.partition, sort_key]}
        await self._store.put(
            f"outcome#{payload.partition}#{sort_key}", item, condition=ItemAbsent()
        )
        logger.debug(f"Outcome {outcome_id} ({payload.event_type}) captured")
        return event

    async def list_for_plan(self, tenant_id: str, plan_id: str) -> List[OutcomeEvent]:
        items = await self._store.query("outcomes", f"tenant#{tenant_id}#plan#{plan_id}")
        return [OutcomeEvent.model_validate(item) for item in items]

    async def list_for_account(self, tenant_id: str, account_id: str) -> List[OutcomeEvent]:
        items = await self._store.query(
            "outcomes", f"tenant#{tenant_id}#account#{account_id}"
        )
        return [OutcomeEvent.model_validate(item) for item in items]
