"""Budget scope, config and reservation models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..models import Verdict


class CostClass(str, Enum):
    CHEAP = "CHEAP"
    MEDIUM = "MEDIUM"
    EXPENSIVE = "EXPENSIVE"


class BudgetPeriod(str, Enum):
    DAY = "DAY"
    MONTH = "MONTH"


class BudgetScope(BaseModel):
    """Key space a budget or usage counter applies to.

    ``tenant_id`` may be ``"*"`` in a config scope to match every tenant.
    """

    tenant_id: str
    account_id: Optional[str] = None
    plan_id: Optional[str] = None
    tool_id: Optional[str] = None

    def storage_key(self) -> str:
        parts = ["TENANT", self.tenant_id]
        if self.account_id:
            parts += ["ACCOUNT", self.account_id]
        if self.plan_id:
            parts += ["PLAN", self.plan_id]
        if self.tool_id:
            parts += ["TOOL", self.tool_id]
        return "#".join(parts)

    def specificity(self) -> int:
        n = 1 if self.tenant_id and self.tenant_id != "*" else 0
        if self.account_id:
            n += 2
        if self.plan_id:
            n += 4
        if self.tool_id:
            n += 8
        return n


class BudgetConfig(BaseModel):
    """Binds a scope pattern and period to per-cost-class caps."""

    scope: BudgetScope
    period: BudgetPeriod
    hard_cap: Dict[CostClass, int] = Field(default_factory=dict)
    soft_cap: Dict[CostClass, int] = Field(default_factory=dict)


class ReserveRequest(BaseModel):
    scope: BudgetScope
    period_key: str
    cost_class: CostClass
    operation_id: str
    amount: int = Field(default=1, ge=1)


class BudgetResult(BaseModel):
    """Admission decision for a reservation."""

    result: Verdict
    reason: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ReserveOutcome(BaseModel):
    """Result of one bounded usage increment."""

    success: bool
    usage_after: int
