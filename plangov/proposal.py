"""Rule-based DRAFT plan generation from plan-type configuration."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from .config import PlanTypeCatalog
from .errors import UnsupportedPlanType
from .models import Plan, PlanStatus, PlanStep
from .utils.time import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS = 30


class PlanProposalGenerator:
    """Build bounded DRAFT proposals. Proposals are never auto-approved."""

    def __init__(self, plan_types: PlanTypeCatalog, clock: Clock = utc_now) -> None:
        self._plan_types = plan_types
        self._clock = clock

    def generate(self, tenant_id: str, account_id: str, plan_type: str) -> Plan:
        config = self._plan_types.get(plan_type)
        if config is None:
            raise UnsupportedPlanType(f"Plan type {plan_type} is not supported.")

        allowed = set(config.allowed_step_action_types)
        sequence = config.default_sequence or config.allowed_step_action_types
        action_types = [a for a in sequence if a in allowed]
        if not action_types:
            raise UnsupportedPlanType(
                f"No allowed steps for plan type {plan_type}; proposal rejected."
            )

        steps = []
        for index, action_type in enumerate(action_types, start=1):
            steps.append(
                PlanStep(
                    step_id=uuid.uuid4().hex,
                    action_type=action_type,
                    sequence=index,
                    dependencies=[steps[-1].step_id] if steps else [],
                )
            )

        now = self._clock()
        days = config.expires_at_days_from_creation or DEFAULT_EXPIRY_DAYS
        plan = Plan(
            plan_id=uuid.uuid4().hex,
            plan_type=plan_type,
            tenant_id=tenant_id,
            account_id=account_id,
            objective=config.objective_template or f"Plan for {account_id}",
            status=PlanStatus.DRAFT,
            steps=steps,
            expires_at=now + timedelta(days=days),
            created_at=now,
            updated_at=now,
        )
        logger.debug(
            f"Proposal {plan.plan_id} generated for {tenant_id}/{account_id} "
            f"with {len(steps)} steps"
        )
        return plan
