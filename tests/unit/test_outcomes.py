import pytest
from pydantic import TypeAdapter, ValidationError

from plangov.governance.outcomes import (
    DownstreamOutcomeInput,
    DuplicateOutcome,
    OutcomeEvent,
    OutcomeInput,
    OutcomesCapture,
    OutcomeSource,
    PlanOutcomeInput,
)


@pytest.fixture
def capture(store, clock):
    return OutcomesCapture(store, clock=clock)


@pytest.mark.asyncio
async def test_plan_outcomes_are_listed(capture, clock):
    await capture.append(
        PlanOutcomeInput(
            tenant_id="t1",
            plan_id="p1",
            event_type="SELLER_EDIT",
            source=OutcomeSource.HUMAN,
            data={"field": "objective"},
        )
    )
    clock.advance(seconds=1)
    await capture.append(
        PlanOutcomeInput(
            tenant_id="t1", plan_id="p1", event_type="EXECUTION_SUCCESS", source=OutcomeSource.CONNECTOR
        )
    )

    events = await capture.list_for_plan("t1", "p1")
    assert [e.event_type for e in events] == ["SELLER_EDIT", "EXECUTION_SUCCESS"]
    assert await capture.list_for_plan("t2", "p1") == []


@pytest.mark.asyncio
async def test_key_events_are_deduplicated(capture):
    payload = PlanOutcomeInput(
        tenant_id="t1",
        plan_id="p1",
        event_type="ACTION_APPROVED",
        source=OutcomeSource.HUMAN,
        data={"idempotency_key": "approve-1"},
    )
    first = await capture.append(payload)
    second = await capture.append(payload)

    assert isinstance(first, OutcomeEvent)
    assert isinstance(second, DuplicateOutcome)
    assert second.outcome_id == first.outcome_id
    assert len(await capture.list_for_plan("t1", "p1")) == 1


@pytest.mark.asyncio
async def test_non_key_events_are_not_deduplicated(capture):
    payload = PlanOutcomeInput(
        tenant_id="t1",
        plan_id="p1",
        event_type="EXECUTION_FAILURE",
        source=OutcomeSource.CONNECTOR,
        data={"idempotency_key": "same"},
    )
    await capture.append(payload)
    await capture.append(payload)
    assert len(await capture.list_for_plan("t1", "p1")) == 2


@pytest.mark.asyncio
async def test_downstream_outcomes_by_account(capture):
    event = await capture.append(
        DownstreamOutcomeInput(
            tenant_id="t1",
            account_id="a1",
            event_type="DOWNSTREAM_WIN",
            data={"opportunity_id": "opp-1"},
        )
    )
    assert event.source == OutcomeSource.DOWNSTREAM
    assert [e.outcome_id for e in await capture.list_for_account("t1", "a1")] == [event.outcome_id]


def test_outcome_input_validation():
    adapter = TypeAdapter(OutcomeInput)
    parsed = adapter.validate_python(
        {
            "tenant_id": "t1",
            "account_id": "a1",
            "event_type": "DOWNSTREAM_LOSS",
            "data": {"opportunity_id": "opp-2"},
        }
    )
    assert isinstance(parsed, DownstreamOutcomeInput)

    with pytest.raises(ValidationError):
        adapter.validate_python(
            {"tenant_id": "t1", "account_id": "a1", "event_type": "DOWNSTREAM_WIN", "data": {}}
        )
    with pytest.raises(ValidationError):
        adapter.validate_python({"tenant_id": "t1", "plan_id": "p1", "event_type": "NOPE"})
