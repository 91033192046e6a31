"""End-to-end plan execution against the in-memory and SQLite stores."""

import asyncio

import pytest

from plangov.adapters import InMemoryExecutionAdapter
from plangov.config import PlangovConfig
from plangov.models import CompletionReason, LedgerEventType, PlanStatus, StepOutcome
from plangov.services import build_services
from plangov.store import InMemoryStore, SQLiteStore


@pytest.fixture(params=["inmemory", "sqlite"])
def flow(request, tmp_path, clock):
    store = InMemoryStore() if request.param == "inmemory" else SQLiteStore(tmp_path / "flow.db")
    adapter = InMemoryExecutionAdapter()
    return build_services(PlangovConfig(), store=store, adapter=adapter, clock=clock), adapter


async def execute_pending(services, adapter, outcome=StepOutcome.DONE):
    """Play the executor: report ``outcome`` for every queued intent."""
    plan = None
    for intent in adapter.drain():
        plan = await services.orchestrator.apply_step_outcome(
            intent.tenant_id,
            intent.account_id,
            intent.plan_id,
            intent.step_id,
            intent.attempt,
            outcome,
            outcome_id=f"out-{intent.intent_id}",
        )
    return plan


@pytest.mark.asyncio
async def test_happy_path(flow, make_plan, clock):
    services, adapter = flow
    await services.repository.put_plan(make_plan(status=PlanStatus.ACTIVE))

    result = await services.orchestrator.run_cycle("t1")
    assert result.steps_started == 1
    assert [(i.step_id, i.attempt) for i in adapter.pending()] == [("s1", 1)]
    clock.advance(seconds=1)
    plan = await execute_pending(services, adapter)
    assert plan.status == PlanStatus.ACTIVE
    clock.advance(seconds=1)

    await services.orchestrator.run_cycle("t1")
    assert [(i.step_id, i.attempt) for i in adapter.pending()] == [("s2", 1)]
    clock.advance(seconds=1)
    plan = await execute_pending(services, adapter)
    clock.advance(seconds=1)

    # The last outcome already completed the plan; the next cycle has nothing to do.
    assert plan.status == PlanStatus.COMPLETED
    assert plan.completion_reason == CompletionReason.ALL_STEPS_DONE
    result = await services.orchestrator.run_cycle("t1")
    assert result.model_dump() == {
        "activated": 0,
        "steps_started": 0,
        "completed": 0,
        "expired": 0,
        "paused": 0,
        "deferred": 0,
        "conflicts": 0,
    }

    entries = await services.ledger.query_by_plan("p1")
    events = [e.event_type for e in reversed(entries)]
    assert events[:3] == [
        LedgerEventType.STEP_STARTED,
        LedgerEventType.STEP_COMPLETED,
        LedgerEventType.STEP_STARTED,
    ]
    assert set(events[3:]) == {LedgerEventType.STEP_COMPLETED, LedgerEventType.PLAN_COMPLETED}


@pytest.mark.asyncio
async def test_cycle_completes_plan_settled_while_paused(flow, make_plan, clock):
    services, adapter = flow
    await services.repository.put_plan(make_plan(status=PlanStatus.ACTIVE))

    await services.orchestrator.run_cycle("t1")
    clock.advance(seconds=1)
    await execute_pending(services, adapter)
    clock.advance(seconds=1)
    await services.orchestrator.run_cycle("t1")
    clock.advance(seconds=1)

    assert (await services.commands.pause("t1", "a1", "p1")).ok
    clock.advance(seconds=1)
    plan = await execute_pending(services, adapter)
    assert plan.status == PlanStatus.PAUSED
    clock.advance(seconds=1)
    assert (await services.commands.resume("t1", "a1", "p1")).ok
    clock.advance(seconds=1)

    result = await services.orchestrator.run_cycle("t1")
    assert result.completed == 1
    stored = await services.repository.get_plan("t1", "a1", "p1")
    assert stored.status == PlanStatus.COMPLETED


@pytest.mark.asyncio
async def test_full_operator_flow(flow, clock):
    services, adapter = flow
    proposed = await services.commands.propose("t1", "a1", "RENEWAL_DEFENSE")
    await services.commands.approve("t1", "a1", proposed.plan_id, approved_by="lead")

    for _ in range(3):
        clock.advance(seconds=1)
        await services.orchestrator.run_cycle("t1")
        clock.advance(seconds=1)
        await execute_pending(services, adapter)

    plan = await services.repository.get_plan("t1", "a1", proposed.plan_id)
    assert plan.status == PlanStatus.COMPLETED
    attempts = await services.orchestrator.list_plan_attempts(plan)
    assert [a["status"] for a in attempts] == ["SUCCEEDED"] * 3


@pytest.mark.asyncio
async def test_concurrent_cycles_dispatch_each_attempt_once(flow, make_plan):
    services, adapter = flow
    for i in range(4):
        await services.repository.put_plan(
            make_plan(f"p{i}", account_id=f"a{i}", status=PlanStatus.ACTIVE)
        )

    await asyncio.gather(*(services.orchestrator.run_cycle("t1") for _ in range(3)))

    refs = [i.action_ref for i in adapter.pending()]
    assert len(refs) == len(set(refs))
    for i in range(4):
        started = await services.step_state.list_attempts(f"p{i}", "s1")
        assert len(started) == len([r for r in refs if r.startswith(f"p{i}#")])
