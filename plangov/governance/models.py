"""Validation context, evidence references and validator results."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from ..models import Verdict
from ..utils.time import parse_datetime, utc_now


class ChokePoint(str, Enum):
    """Where in the surrounding system validators are invoked."""

    BEFORE_PLAN_APPROVAL = "BEFORE_PLAN_APPROVAL"
    BEFORE_STEP_EXECUTION = "BEFORE_STEP_EXECUTION"
    BEFORE_EXTERNAL_WRITEBACK = "BEFORE_EXTERNAL_WRITEBACK"
    BEFORE_EXPENSIVE_READ = "BEFORE_EXPENSIVE_READ"


class SourceEvidence(BaseModel):
    source_type: str
    source_id: str


class LedgerEvidence(BaseModel):
    ledger_event_id: str


class RecordLocator(BaseModel):
    system: str
    object: str
    id: str
    fields: Optional[List[str]] = None


class LocatorEvidence(BaseModel):
    record_locator: RecordLocator


EvidenceReference = Union[SourceEvidence, LedgerEvidence, LocatorEvidence]

_evidence_adapter = TypeAdapter(EvidenceReference)


def is_evidence_reference(value: Any) -> bool:
    """True when ``value`` has one of the three accepted evidence shapes."""
    if not isinstance(value, dict):
        return False
    try:
        _evidence_adapter.validate_python(value, strict=True)
    except ValidationError:
        return False
    return True


class DataSource(BaseModel):
    source_id: str
    last_updated: datetime

    @field_validator("last_updated")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return parse_datetime(value)


class ValidatorContext(BaseModel):
    """Everything a validator may inspect for one validation run."""

    choke_point: ChokePoint
    tenant_id: str
    target_id: str
    evaluation_time: datetime = Field(default_factory=utc_now)
    validation_run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    snapshot_id: Optional[str] = None
    account_id: Optional[str] = None
    plan_id: Optional[str] = None
    step_id: Optional[str] = None
    step_or_proposal: Optional[Dict[str, Any]] = None
    canonical_snapshot: Optional[Dict[str, Any]] = None
    evidence_references: Optional[List[Dict[str, Any]]] = None
    data_sources: Optional[List[DataSource]] = None
    writeback_payload: Optional[Dict[str, Any]] = None

    @field_validator("evaluation_time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return parse_datetime(value)


class ValidatorResult(BaseModel):
    validator: str
    result: Verdict
    reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class GatewayResult(BaseModel):
    aggregate: Verdict
    results: List[ValidatorResult] = Field(default_factory=list)
