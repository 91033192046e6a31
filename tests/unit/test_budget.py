import pytest

from plangov.budget import (
    BudgetCatalog,
    BudgetConfig,
    BudgetPeriod,
    BudgetScope,
    CostClass,
    ReserveRequest,
    effective_hard_cap,
    infer_period,
)
from plangov.budget.service import BudgetService
from plangov.budget.usage import BudgetUsageStore
from plangov.ledger import PlanLedger
from plangov.models import LedgerEventType, Verdict

TENANT = BudgetScope(tenant_id="t1")


def daily(hard=50, soft=40, scope=None):
    return BudgetConfig(
        scope=scope or BudgetScope(tenant_id="*"),
        period=BudgetPeriod.DAY,
        hard_cap={CostClass.EXPENSIVE: hard} if hard is not None else {},
        soft_cap={CostClass.EXPENSIVE: soft} if soft is not None else {},
    )


@pytest.fixture
def usage(store):
    return BudgetUsageStore(store)


@pytest.fixture
def ledger(store, clock):
    return PlanLedger(store, clock=clock)


@pytest.fixture
def budget(usage, ledger):
    return BudgetService(BudgetCatalog([daily()]), usage, ledger)


def request(operation_id, amount=1, period_key="2025-03-01", scope=TENANT):
    return ReserveRequest(
        scope=scope,
        period_key=period_key,
        cost_class=CostClass.EXPENSIVE,
        operation_id=operation_id,
        amount=amount,
    )


async def current(usage, period_key="2025-03-01", scope=TENANT):
    return (await usage.get_usage(scope, period_key))[CostClass.EXPENSIVE]


@pytest.mark.asyncio
async def test_reservation_sequence(budget, usage):
    first = await budget.reserve(request("op-1", 40))
    assert first.result == Verdict.ALLOW
    assert first.details["usage_after"] == 40

    second = await budget.reserve(request("op-2", 1))
    assert second.result == Verdict.WARN
    assert second.reason == "SOFT_CAP_EXCEEDED"
    assert second.details["usage_after"] == 41

    third = await budget.reserve(request("op-3", 10))
    assert third.result == Verdict.BLOCK
    assert third.reason == "HARD_CAP_EXCEEDED"
    assert third.details["usage_before"] == 41
    assert await current(usage) == 41


@pytest.mark.asyncio
async def test_hard_cap_boundary(budget, usage):
    assert (await budget.reserve(request("fill", 49))).result == Verdict.WARN

    at_cap = await budget.reserve(request("last", 1))
    assert at_cap.result == Verdict.WARN
    assert at_cap.details["usage_after"] == 50

    over = await budget.reserve(request("over", 1))
    assert over.result == Verdict.BLOCK
    assert await current(usage) == 50


@pytest.mark.asyncio
async def test_repeated_operation_returns_cached_result(budget, usage):
    first = await budget.reserve(request("op-1", 5))
    again = await budget.reserve(request("op-1", 5))
    assert again == first
    assert await current(usage) == 5


@pytest.mark.asyncio
async def test_blocked_result_is_cached_too(budget, usage):
    await budget.reserve(request("fill", 50))
    blocked = await budget.reserve(request("op-x", 1))
    assert blocked.result == Verdict.BLOCK
    assert await budget.reserve(request("op-x", 1)) == blocked


@pytest.mark.asyncio
async def test_operation_in_progress(budget, usage):
    await usage.claim_operation(TENANT, "2025-03-01", CostClass.EXPENSIVE, "op-1")
    result = await budget.reserve(request("op-1", 1))
    assert result.result == Verdict.BLOCK
    assert result.reason == "OPERATION_IN_PROGRESS"
    assert await current(usage) == 0


@pytest.mark.asyncio
async def test_no_applicable_config_fails_closed(usage, ledger):
    service = BudgetService(
        BudgetCatalog([daily(scope=BudgetScope(tenant_id="other"))]), usage, ledger
    )
    result = await service.reserve(request("op-1"))
    assert result.result == Verdict.BLOCK
    assert result.reason == "NO_APPLICABLE_CONFIG"
    assert result.details["matched_configs"] == []

    # A monthly key does not match a daily config either.
    result = await service.reserve(request("op-2", period_key="2025-03"))
    assert result.reason == "NO_APPLICABLE_CONFIG"


@pytest.mark.asyncio
@pytest.mark.parametrize("period_key", ["2025-3-01", "20250301", "2025-13", "", "2025-03-01T00"])
async def test_invalid_period_key(budget, period_key):
    result = await budget.reserve(request("op-1", period_key=period_key))
    assert result.result == Verdict.BLOCK
    assert result.reason == "INVALID_PERIOD_KEY"


def test_infer_period():
    assert infer_period("2025-03-01") == BudgetPeriod.DAY
    assert infer_period("2025-03") == BudgetPeriod.MONTH
    assert infer_period("2025/03") is None


@pytest.mark.asyncio
async def test_unbounded_hard_cap_allows(usage, ledger):
    service = BudgetService(BudgetCatalog([daily(hard=None, soft=None)]), usage, ledger)
    result = await service.reserve(request("op-1", 10_000))
    assert result.result == Verdict.ALLOW
    assert result.details["cap_hard"] is None


@pytest.mark.asyncio
async def test_unbounded_hard_cap_ignores_soft_cap(usage, ledger):
    service = BudgetService(BudgetCatalog([daily(hard=None, soft=5)]), usage, ledger)
    result = await service.reserve(request("op-1", 10))
    assert result.result == Verdict.ALLOW
    assert result.reason is None
    assert await current(usage) == 10

    entries = await ledger.query_by_plan("_budget")
    assert [e.event_type for e in entries] == [LedgerEventType.BUDGET_RESERVE]


class FlakyUsageStore(BudgetUsageStore):
    """Fails the first reservation as if the store were unreachable."""

    def __init__(self, store):
        super().__init__(store)
        self.failures = 1

    async def reserve(self, *args, **kwargs):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("store unreachable")
        return await super().reserve(*args, **kwargs)


@pytest.mark.asyncio
async def test_failed_reservation_can_be_retried(store, ledger):
    flaky = FlakyUsageStore(store)
    service = BudgetService(BudgetCatalog([daily()]), flaky, ledger)

    with pytest.raises(ConnectionError):
        await service.reserve(request("op-1", 5))

    result = await service.reserve(request("op-1", 5))
    assert result.result == Verdict.ALLOW
    assert result.details["usage_after"] == 5
    assert await service.reserve(request("op-1", 5)) == result
    assert await current(flaky) == 5


@pytest.mark.asyncio
async def test_most_restrictive_cap_applies(usage, ledger):
    account_scope = BudgetScope(tenant_id="t1", account_id="a1")
    catalog = BudgetCatalog([daily(hard=50), daily(hard=5, soft=None, scope=account_scope)])
    service = BudgetService(catalog, usage, ledger)

    assert effective_hard_cap(catalog.matching(account_scope, BudgetPeriod.DAY), CostClass.EXPENSIVE) == 5
    assert len(catalog.matching(TENANT, BudgetPeriod.DAY)) == 1

    result = await service.reserve(request("op-1", 6, scope=account_scope))
    assert result.result == Verdict.BLOCK
    assert result.details["matched_configs"][0] == {"tenant_id": "t1", "account_id": "a1"}


@pytest.mark.asyncio
async def test_decisions_are_audited(budget, ledger):
    await budget.reserve(request("op-1", 45))
    await budget.reserve(request("op-2", 10))

    entries = await ledger.query_by_plan("_budget")
    kinds = sorted(e.event_type.value for e in entries)
    assert kinds == [LedgerEventType.BUDGET_BLOCK.value, LedgerEventType.BUDGET_WARN.value]
    block = next(e for e in entries if e.event_type == LedgerEventType.BUDGET_BLOCK)
    assert block.data["operation_id"] == "op-2"
    assert block.data["reason"] == "HARD_CAP_EXCEEDED"
