"""Budget config matching and effective cap resolution."""

from __future__ import annotations

import re
from typing import List, Optional

from .models import BudgetConfig, BudgetPeriod, BudgetScope, CostClass

_DAY_KEY = re.compile(r"^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")
_MONTH_KEY = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def infer_period(period_key: str) -> Optional[BudgetPeriod]:
    """Map ``YYYY-MM-DD`` to DAY and ``YYYY-MM`` to MONTH; anything else is None."""
    if _DAY_KEY.match(period_key):
        return BudgetPeriod.DAY
    if _MONTH_KEY.match(period_key):
        return BudgetPeriod.MONTH
    return None


def config_applies(config_scope: BudgetScope, request_scope: BudgetScope) -> bool:
    """Every field set on the config scope must match the request scope."""
    if config_scope.tenant_id != "*" and config_scope.tenant_id != request_scope.tenant_id:
        return False
    for name in ("account_id", "plan_id", "tool_id"):
        expected = getattr(config_scope, name)
        if expected is not None and expected != getattr(request_scope, name):
            return False
    return True


class BudgetCatalog:
    """Resolves which budget configs apply to a scope and period."""

    def __init__(self, configs: List[BudgetConfig]) -> None:
        self._configs = list(configs)

    def matching(self, scope: BudgetScope, period: BudgetPeriod) -> List[BudgetConfig]:
        """Applicable configs, most specific scope first."""
        applicable = [
            c for c in self._configs if c.period == period and config_applies(c.scope, scope)
        ]
        applicable.sort(key=lambda c: c.scope.specificity(), reverse=True)
        return applicable


def effective_hard_cap(configs: List[BudgetConfig], cost_class: CostClass) -> Optional[int]:
    """Smallest hard cap across ``configs``; ``None`` means unbounded."""
    values = [c.hard_cap[cost_class] for c in configs if c.hard_cap.get(cost_class, -1) >= 0]
    return min(values) if values else None


def effective_soft_cap(configs: List[BudgetConfig], cost_class: CostClass) -> Optional[int]:
    values = [c.soft_cap[cost_class] for c in configs if c.soft_cap.get(cost_class, -1) >= 0]
    return min(values) if values else None
