"""Deterministic approval and activation checks for plans."""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, Field

from .config import PlanTypeCatalog, PolicyGateConfig
from .models import Plan


class ReasonCode(str, Enum):
    INVALID_PLAN_TYPE = "INVALID_PLAN_TYPE"
    STEP_ORDER_VIOLATION = "STEP_ORDER_VIOLATION"
    RISK_ELEVATED = "RISK_ELEVATED"
    HUMAN_TOUCH_REQUIRED = "HUMAN_TOUCH_REQUIRED"
    PRECONDITIONS_UNMET = "PRECONDITIONS_UNMET"
    CONFLICT_ACTIVE_PLAN = "CONFLICT_ACTIVE_PLAN"


class PolicyReason(BaseModel):
    code: ReasonCode
    message: str


class ApprovalVerdict(BaseModel):
    valid: bool
    reasons: List[PolicyReason] = Field(default_factory=list)


class ActivationVerdict(BaseModel):
    can_activate: bool
    reasons: List[PolicyReason] = Field(default_factory=list)

    def has(self, code: ReasonCode) -> bool:
        return any(r.code == code for r in self.reasons)


class PlanPolicyGate:
    """Pure validation of plans against plan-type and policy configuration.

    No I/O: identical inputs always give identical verdicts, so both the API
    path and the orchestrator may call it freely.
    """

    def __init__(self, plan_types: PlanTypeCatalog, config: Optional[PolicyGateConfig] = None):
        self._plan_types = plan_types
        self._config = config or PolicyGateConfig()

    def validate_for_approval(self, plan: Plan) -> ApprovalVerdict:
        reasons: List[PolicyReason] = []
        type_config = self._plan_types.get(plan.plan_type)
        if type_config is None:
            reasons.append(
                PolicyReason(
                    code=ReasonCode.INVALID_PLAN_TYPE,
                    message=f"Plan type {plan.plan_type} is not allowed for this tenant.",
                )
            )
        else:
            allowed = type_config.allowed_step_action_types
            for step in plan.steps:
                if step.action_type not in allowed:
                    reasons.append(
                        PolicyReason(
                            code=ReasonCode.STEP_ORDER_VIOLATION,
                            message=(
                                f"Disallowed step action_type: {step.action_type}. "
                                f"Allowed: {', '.join(allowed)}."
                            ),
                        )
                    )

        dangling = self._first_missing_dependency(plan)
        if dangling is not None:
            reasons.append(dangling)
        if self._config.require_elevated_for_high_risk and self._has_high_risk_step(plan):
            reasons.append(
                PolicyReason(
                    code=ReasonCode.RISK_ELEVATED,
                    message="Plan has high-risk step; elevated authority required.",
                )
            )
        if self._config.human_touch_required:
            reasons.append(
                PolicyReason(
                    code=ReasonCode.HUMAN_TOUCH_REQUIRED,
                    message="Human-touch required (e.g. external contact) not satisfied.",
                )
            )
        return ApprovalVerdict(valid=not reasons, reasons=reasons)

    def evaluate_can_activate(
        self,
        plan: Plan,
        existing_active_plan_ids: Optional[Sequence[str]] = None,
        preconditions_met: Any = None,
    ) -> ActivationVerdict:
        """Check whether ``plan`` may become ACTIVE.

        ``preconditions_met`` must be an actual ``bool``; a missing or
        non-boolean value fails with ``PRECONDITIONS_UNMET``.
        """
        reasons: List[PolicyReason] = []
        if not isinstance(preconditions_met, bool):
            reasons.append(
                PolicyReason(
                    code=ReasonCode.PRECONDITIONS_UNMET,
                    message="preconditions_met is required and must be a boolean.",
                )
            )
        elif not preconditions_met:
            reasons.append(
                PolicyReason(
                    code=ReasonCode.PRECONDITIONS_UNMET,
                    message="Required approvals, dependencies, or data not met.",
                )
            )

        others = [pid for pid in existing_active_plan_ids or [] if pid != plan.plan_id]
        if others:
            reasons.append(
                PolicyReason(
                    code=ReasonCode.CONFLICT_ACTIVE_PLAN,
                    message=(
                        "Another ACTIVE plan exists for same account and plan type: "
                        f"{', '.join(others)}."
                    ),
                )
            )
        if plan.plan_type not in self._plan_types:
            reasons.append(
                PolicyReason(
                    code=ReasonCode.INVALID_PLAN_TYPE,
                    message=f"Plan type {plan.plan_type} is not allowed.",
                )
            )
        return ActivationVerdict(can_activate=not reasons, reasons=reasons)

    @staticmethod
    def _first_missing_dependency(plan: Plan) -> Optional[PolicyReason]:
        step_ids = {s.step_id for s in plan.steps}
        for step in plan.steps:
            for dep in step.dependencies:
                if dep not in step_ids:
                    return PolicyReason(
                        code=ReasonCode.STEP_ORDER_VIOLATION,
                        message=f"Step {step.step_id} depends on missing step {dep}.",
                    )
        return None

    def _has_high_risk_step(self, plan: Plan) -> bool:
        risky = set(self._config.high_risk_action_types)
        return any(s.action_type in risky for s in plan.steps)
