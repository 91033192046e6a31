"""Composition root: build every service from one configuration object."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .adapters import ExecutionAdapter, get_execution_adapter
from .budget.service import BudgetService
from .budget.usage import BudgetUsageStore
from .commands import PlanCommands
from .config import PlangovConfig
from .evaluator import PlanStateEvaluator
from .governance.gateway import ValidatorGateway
from .governance.outcomes import OutcomesCapture
from .governance.validators import default_validators
from .ledger import PlanLedger
from .lifecycle import PlanLifecycle
from .orchestrator import PlanOrchestrator
from .policy_gate import PlanPolicyGate
from .proposal import PlanProposalGenerator
from .repository import PlanRepository
from .step_state import StepExecutionState
from .store import KeyValueStore, get_store
from .utils.time import Clock, utc_now


@dataclass
class Services:
    config: PlangovConfig
    store: KeyValueStore
    adapter: ExecutionAdapter
    ledger: PlanLedger
    repository: PlanRepository
    step_state: StepExecutionState
    policy_gate: PlanPolicyGate
    evaluator: PlanStateEvaluator
    lifecycle: PlanLifecycle
    orchestrator: PlanOrchestrator
    proposals: PlanProposalGenerator
    commands: PlanCommands
    gateway: ValidatorGateway
    budget: BudgetService
    outcomes: OutcomesCapture


def build_services(
    config: Optional[PlangovConfig] = None,
    store: Optional[KeyValueStore] = None,
    adapter: Optional[ExecutionAdapter] = None,
    clock: Clock = utc_now,
) -> Services:
    """Wire the services together.

    ``store`` and ``adapter`` default to the backends named in ``config``.
    Passing ``clock`` makes every time-dependent service use it.
    """
    config = config or PlangovConfig()
    store = store or get_store(config=config)
    adapter = adapter or get_execution_adapter(config=config)
    plan_types = config.plan_type_catalog()

    ledger = PlanLedger(store, clock=clock)
    repository = PlanRepository(store, clock=clock)
    step_state = StepExecutionState(store, clock=clock)
    policy_gate = PlanPolicyGate(plan_types, config.policy_gate)
    evaluator = PlanStateEvaluator(clock=clock)
    lifecycle = PlanLifecycle(repository, ledger, clock=clock)
    orchestrator = PlanOrchestrator(
        repository,
        lifecycle,
        policy_gate,
        ledger,
        evaluator,
        step_state,
        adapter,
        plan_types,
        config=config.orchestrator,
        clock=clock,
    )
    proposals = PlanProposalGenerator(plan_types, clock=clock)
    commands = PlanCommands(repository, lifecycle, policy_gate, ledger, proposals)
    gateway = ValidatorGateway(ledger, default_validators(config.governance))
    budget = BudgetService(config.budget_catalog(), BudgetUsageStore(store), ledger)
    outcomes = OutcomesCapture(store, clock=clock)

    return Services(
        config=config,
        store=store,
        adapter=adapter,
        ledger=ledger,
        repository=repository,
        step_state=step_state,
        policy_gate=policy_gate,
        evaluator=evaluator,
        lifecycle=lifecycle,
        orchestrator=orchestrator,
        proposals=proposals,
        commands=commands,
        gateway=gateway,
        budget=budget,
        outcomes=outcomes,
    )
