import itertools

import pytest

from plangov.errors import InvalidTransition, TransitionConflict, UnauditedTransition
from plangov.ledger import PlanLedger
from plangov.lifecycle import ALLOWED_TRANSITIONS, PlanLifecycle, is_allowed
from plangov.models import CompletionReason, LedgerEventType, PlanStatus
from plangov.repository import PlanRepository

EXPECTED_EVENTS = {
    (PlanStatus.DRAFT, PlanStatus.APPROVED): LedgerEventType.PLAN_APPROVED,
    (PlanStatus.APPROVED, PlanStatus.ACTIVE): LedgerEventType.PLAN_ACTIVATED,
    (PlanStatus.APPROVED, PlanStatus.ABORTED): LedgerEventType.PLAN_ABORTED,
    (PlanStatus.ACTIVE, PlanStatus.PAUSED): LedgerEventType.PLAN_PAUSED,
    (PlanStatus.ACTIVE, PlanStatus.COMPLETED): LedgerEventType.PLAN_COMPLETED,
    (PlanStatus.ACTIVE, PlanStatus.ABORTED): LedgerEventType.PLAN_ABORTED,
    (PlanStatus.ACTIVE, PlanStatus.EXPIRED): LedgerEventType.PLAN_EXPIRED,
    (PlanStatus.PAUSED, PlanStatus.ACTIVE): LedgerEventType.PLAN_RESUMED,
    (PlanStatus.PAUSED, PlanStatus.ABORTED): LedgerEventType.PLAN_ABORTED,
}


class FailingLedger(PlanLedger):
    async def append(self, *args, **kwargs):
        raise RuntimeError("ledger unavailable")


@pytest.fixture
def repo(store, clock):
    return PlanRepository(store, clock=clock)


@pytest.fixture
def ledger(store, clock):
    return PlanLedger(store, clock=clock)


@pytest.fixture
def lifecycle(repo, ledger, clock):
    return PlanLifecycle(repo, ledger, clock=clock)


def test_transition_table_is_exactly_the_legal_set():
    allowed = {
        (a, b) for a, b in itertools.product(PlanStatus, PlanStatus) if is_allowed(a, b)
    }
    assert allowed == set(EXPECTED_EVENTS)
    for status in (PlanStatus.COMPLETED, PlanStatus.ABORTED, PlanStatus.EXPIRED):
        assert ALLOWED_TRANSITIONS[status] == frozenset()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "from_status,to_status", list(itertools.product(PlanStatus, PlanStatus))
)
async def test_every_status_pair(lifecycle, repo, ledger, make_plan, from_status, to_status):
    plan = make_plan(status=from_status)
    await repo.put_plan(plan)

    if (from_status, to_status) not in EXPECTED_EVENTS:
        with pytest.raises(InvalidTransition):
            await lifecycle.transition(plan, to_status)
        assert (await repo.get_plan("t1", "a1", "p1")).status == from_status
        assert await ledger.query_by_plan("p1") == []
        return

    updated = await lifecycle.transition(plan, to_status)
    assert updated.status == to_status
    assert (await repo.get_plan("t1", "a1", "p1")).status == to_status

    entries = await ledger.query_by_plan("p1")
    assert [e.event_type for e in entries] == [EXPECTED_EVENTS[(from_status, to_status)]]
    assert entries[0].data["from_status"] == from_status.value
    assert entries[0].data["to_status"] == to_status.value


@pytest.mark.asyncio
async def test_same_status_is_rejected(lifecycle, make_plan):
    with pytest.raises(InvalidTransition, match="same status"):
        await lifecycle.transition(make_plan(status=PlanStatus.ACTIVE), PlanStatus.ACTIVE)


@pytest.mark.asyncio
async def test_status_specific_fields(lifecycle, repo, ledger, make_plan, clock):
    plan = make_plan()
    await repo.put_plan(plan)
    approved = await lifecycle.transition(plan, PlanStatus.APPROVED, approved_by="lead")
    assert approved.approved_by == "lead"
    assert approved.approved_at == clock()

    active = await lifecycle.transition(approved, PlanStatus.ACTIVE)
    clock.advance(seconds=1)
    completed = await lifecycle.transition(
        active,
        PlanStatus.COMPLETED,
        completed_at=clock(),
        completion_reason=CompletionReason.ALL_STEPS_DONE,
    )
    assert completed.completion_reason == CompletionReason.ALL_STEPS_DONE
    assert completed.completed_at == clock()

    latest = (await ledger.query_by_plan("p1", limit=1))[0]
    assert latest.data["completion_reason"] == "all_steps_done"


@pytest.mark.asyncio
async def test_stale_snapshot_conflicts(lifecycle, repo, make_plan):
    plan = make_plan(status=PlanStatus.ACTIVE)
    await repo.put_plan(plan)
    await lifecycle.transition(plan, PlanStatus.PAUSED, reason="operator")

    # ``plan`` still says ACTIVE; the stored plan is PAUSED.
    with pytest.raises(TransitionConflict):
        await lifecycle.transition(plan, PlanStatus.COMPLETED)
    assert (await repo.get_plan("t1", "a1", "p1")).status == PlanStatus.PAUSED


@pytest.mark.asyncio
async def test_ledger_failure_leaves_unaudited_transition(repo, store, clock, make_plan):
    lifecycle = PlanLifecycle(repo, FailingLedger(store, clock=clock), clock=clock)
    plan = make_plan(status=PlanStatus.ACTIVE)
    await repo.put_plan(plan)

    with pytest.raises(UnauditedTransition):
        await lifecycle.transition(plan, PlanStatus.ABORTED)
    assert (await repo.get_plan("t1", "a1", "p1")).status == PlanStatus.ABORTED
