"""Shared fixtures for plangov tests."""

from datetime import datetime, timedelta, timezone

import pytest

from plangov.adapters import InMemoryExecutionAdapter
from plangov.config import PlangovConfig
from plangov.models import Plan, PlanStatus, PlanStep
from plangov.services import build_services
from plangov.store import InMemoryStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def adapter():
    return InMemoryExecutionAdapter()


@pytest.fixture
def config():
    return PlangovConfig()


@pytest.fixture
def services(config, store, adapter, clock):
    return build_services(config, store=store, adapter=adapter, clock=clock)


@pytest.fixture
def make_plan(clock):
    """Factory for a two-step RENEWAL_DEFENSE plan (S2 depends on S1)."""

    def _make(
        plan_id: str = "p1",
        status: PlanStatus = PlanStatus.DRAFT,
        tenant_id: str = "t1",
        account_id: str = "a1",
        plan_type: str = "RENEWAL_DEFENSE",
        steps=None,
        expires_in_days: int = 30,
    ) -> Plan:
        if steps is None:
            steps = [
                PlanStep(step_id="s1", action_type="REQUEST_RENEWAL_MEETING", sequence=1),
                PlanStep(
                    step_id="s2",
                    action_type="PREP_RENEWAL_BRIEF",
                    sequence=2,
                    dependencies=["s1"],
                ),
            ]
        return Plan(
            plan_id=plan_id,
            plan_type=plan_type,
            tenant_id=tenant_id,
            account_id=account_id,
            objective="Secure renewal",
            status=status,
            steps=steps,
            expires_at=clock() + timedelta(days=expires_in_days),
            created_at=clock(),
            updated_at=clock(),
        )

    return _make
