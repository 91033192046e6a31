"""Budget admission control."""

from .catalog import BudgetCatalog, effective_hard_cap, effective_soft_cap, infer_period
from .models import (
    BudgetConfig,
    BudgetPeriod,
    BudgetResult,
    BudgetScope,
    CostClass,
    ReserveOutcome,
    ReserveRequest,
)

__all__ = [
    "BudgetCatalog",
    "BudgetConfig",
    "BudgetPeriod",
    "BudgetResult",
    "BudgetScope",
    "CostClass",
    "ReserveOutcome",
    "ReserveRequest",
    "effective_hard_cap",
    "effective_soft_cap",
    "infer_period",
]
