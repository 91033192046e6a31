from __future__ import annotations

import os
from datetime import timedelta
from typing import Annotated, List, Literal, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field

from .budget.catalog import BudgetCatalog
from .budget.models import BudgetConfig, BudgetPeriod, BudgetScope, CostClass

DEFAULT_HARD_TTL = timedelta(days=14)
DEFAULT_SOFT_TTL = timedelta(days=7)


class RedisConfig(BaseModel):
    """Configuration for the Redis execution queue."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class ExecutionConfig(BaseModel):
    """Where step intents are handed off for execution."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = Field(default_factory=RedisConfig)
    queue_prefix: str = "plangov:intents"


class StoreConfig(BaseModel):
    database_url: Optional[str] = None


class OrchestratorConfig(BaseModel):
    """Per-cycle bounds and retry policy for the orchestrator."""

    max_plans_per_run: int = Field(default=10, ge=1)
    default_max_retries_per_step: int = Field(default=3, ge=1)
    # Seconds base for exponential backoff between attempts; None disables it.
    retry_backoff_base: Optional[float] = Field(default=None, gt=0)


class PolicyGateConfig(BaseModel):
    require_elevated_for_high_risk: bool = False
    high_risk_action_types: List[str] = Field(
        default_factory=lambda: ["REQUEST_RENEWAL_MEETING", "EXECUTE_CONTRACT"]
    )
    human_touch_required: bool = False


class PlanTypeConfig(BaseModel):
    """Allowed steps and defaults for one plan type."""

    plan_type: str
    allowed_step_action_types: List[str]
    default_sequence: Optional[List[str]] = None
    max_retries_per_step: Optional[int] = Field(default=None, ge=1)
    expires_at_days_from_creation: Optional[int] = Field(default=None, ge=1)
    objective_template: Optional[str] = None


RENEWAL_DEFENSE = PlanTypeConfig(
    plan_type="RENEWAL_DEFENSE",
    allowed_step_action_types=[
        "REQUEST_RENEWAL_MEETING",
        "PREP_RENEWAL_BRIEF",
        "ESCALATE_SUPPORT_RISK",
    ],
    default_sequence=[
        "REQUEST_RENEWAL_MEETING",
        "PREP_RENEWAL_BRIEF",
        "ESCALATE_SUPPORT_RISK",
    ],
    max_retries_per_step=3,
    expires_at_days_from_creation=30,
    objective_template="Secure renewal before day -30",
)


class PlanTypeCatalog:
    """Lookup of plan-type configuration by name."""

    def __init__(self, entries: List[PlanTypeConfig]) -> None:
        self._by_type = {entry.plan_type: entry for entry in entries}

    def get(self, plan_type: str) -> Optional[PlanTypeConfig]:
        """Return config for ``plan_type`` or ``None`` when unsupported."""
        return self._by_type.get(plan_type)

    def __contains__(self, plan_type: object) -> bool:
        return plan_type in self._by_type


class FreshnessTtl(BaseModel):
    source_id: str
    hard_ttl: timedelta = DEFAULT_HARD_TTL
    soft_ttl: timedelta = DEFAULT_SOFT_TTL


class EqRule(BaseModel):
    kind: Literal["eq"] = "eq"


class NoBackwardRule(BaseModel):
    kind: Literal["no_backward"] = "no_backward"
    ordering: List[str]


class DateWindowRule(BaseModel):
    kind: Literal["date_window"] = "date_window"
    max_days_delta: float


ContradictionRule = Annotated[
    Union[EqRule, NoBackwardRule, DateWindowRule], Field(discriminator="kind")
]


class ContradictionFieldConfig(BaseModel):
    field: str
    rule: ContradictionRule


class GovernanceConfig(BaseModel):
    """Settings read by the governance validators."""

    grounding_missing_action: Literal["WARN", "BLOCK"] = "BLOCK"
    restricted_fields: List[str] = Field(default_factory=list)
    prohibited_action_types: List[str] = Field(default_factory=list)
    freshness_ttls: List[FreshnessTtl] = Field(
        default_factory=lambda: [
            FreshnessTtl(source_id="canonical.crm"),
            FreshnessTtl(source_id="canonical.support"),
            FreshnessTtl(source_id="usage_analytics"),
        ]
    )
    contradiction_fields: List[ContradictionFieldConfig] = Field(default_factory=list)

    def ttl_for_source(
        self, source_id: str, strict: bool = False
    ) -> Tuple[timedelta, timedelta]:
        """Return ``(hard_ttl, soft_ttl)`` for ``source_id``.

        Unconfigured sources fall back to 14d/7d unless ``strict`` is set.
        """
        for entry in self.freshness_ttls:
            if entry.source_id == source_id:
                return entry.hard_ttl, entry.soft_ttl
        if strict:
            raise KeyError(f"Freshness TTL config missing for source_id={source_id}")
        return DEFAULT_HARD_TTL, DEFAULT_SOFT_TTL


DEFAULT_BUDGETS = [
    BudgetConfig(
        scope=BudgetScope(tenant_id="*"),
        period=BudgetPeriod.DAY,
        hard_cap={CostClass.EXPENSIVE: 50, CostClass.MEDIUM: 200, CostClass.CHEAP: 1000},
        soft_cap={CostClass.EXPENSIVE: 40},
    )
]


class PlangovConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    policy_gate: PolicyGateConfig = Field(default_factory=PolicyGateConfig)
    plan_types: List[PlanTypeConfig] = Field(
        default_factory=lambda: [RENEWAL_DEFENSE.model_copy(deep=True)]
    )
    governance: GovernanceConfig = Field(default_factory=GovernanceConfig)
    budgets: List[BudgetConfig] = Field(
        default_factory=lambda: [b.model_copy(deep=True) for b in DEFAULT_BUDGETS]
    )

    def plan_type_catalog(self) -> PlanTypeCatalog:
        return PlanTypeCatalog(self.plan_types)

    def budget_catalog(self) -> BudgetCatalog:
        return BudgetCatalog(self.budgets)


def load_config(path: Optional[str] = None) -> PlangovConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PLANGOV_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("PLANGOV_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PlangovConfig(**data)
    else:
        config = PlangovConfig()

    env_db_url = os.getenv("PLANGOV_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.store.database_url = env_db_url
    return config
