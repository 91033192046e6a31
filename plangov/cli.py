"""Command line interface for operating plangov."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from plangov.budget import BudgetScope, CostClass, ReserveRequest
from plangov.commands import CommandResult
from plangov.config import load_config
from plangov.governance.models import ValidatorContext
from plangov.models import PlanStatus, StepOutcome, Verdict
from plangov.services import Services, build_services

app = typer.Typer(help="CLI for governed plan orchestration")

orchestrator_app = typer.Typer(help="Run orchestration cycles and report step outcomes")
plan_app = typer.Typer(help="Propose, approve and operate plans")
budget_app = typer.Typer(help="Budget reservations")
governance_app = typer.Typer(help="Governance validators")

app.add_typer(orchestrator_app, name="orchestrator")
app.add_typer(plan_app, name="plan")
app.add_typer(budget_app, name="budget")
app.add_typer(governance_app, name="governance")

_state = {"config": None}


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML config file (default: $PLANGOV_CONFIG or config.yaml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """plangov CLI entry point.

    State lives in the configured store; with no database configured every
    command runs against a fresh in-memory store.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    _state["config"] = str(config) if config else None


def _services() -> Services:
    return build_services(load_config(_state["config"]))


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def _finish(result: CommandResult) -> None:
    if not result.ok:
        typer.secho(f"Error: {result.error}", fg=typer.colors.RED)
        for reason in result.reasons:
            typer.echo(f"  {reason.code.value}: {reason.message}")
        raise typer.Exit(code=1)
    typer.echo(f"{result.plan_id}\t{result.status.value}")


# ---------------------------------------------------------------------------
# orchestrator
@orchestrator_app.command("run-cycle")
def orchestrator_run_cycle(tenant_id: str) -> None:
    """
    Run one orchestration cycle for a tenant.

    Activates eligible APPROVED plans and starts at most one step per ACTIVE
    plan, bounded by ``orchestrator.max_plans_per_run``.

    Example:
        plangov orchestrator run-cycle tenant-1
    """
    services = _services()
    result = asyncio.run(services.orchestrator.run_cycle(tenant_id))
    _echo_json(result.model_dump())


@orchestrator_app.command("apply-outcome")
def orchestrator_apply_outcome(
    tenant_id: str,
    account_id: str,
    plan_id: str,
    step_id: str,
    attempt: int,
    outcome: StepOutcome,
    outcome_id: Optional[str] = typer.Option(None, help="Executor's outcome reference"),
    error_message: Optional[str] = typer.Option(None, help="Failure or skip reason"),
) -> None:
    """Report the result of one step attempt."""
    services = _services()
    plan = asyncio.run(
        services.orchestrator.apply_step_outcome(
            tenant_id,
            account_id,
            plan_id,
            step_id,
            attempt,
            outcome,
            outcome_id=outcome_id,
            error_message=error_message,
        )
    )
    if plan is None:
        typer.echo("Outcome ignored")
        return
    typer.echo(f"{plan.plan_id}\t{plan.status.value}")


# ---------------------------------------------------------------------------
# plan
@plan_app.command("propose")
def plan_propose(
    tenant_id: str,
    account_id: str,
    plan_type: str = typer.Option("RENEWAL_DEFENSE", help="Configured plan type"),
) -> None:
    """Generate and store a DRAFT plan."""
    services = _services()
    _finish(asyncio.run(services.commands.propose(tenant_id, account_id, plan_type)))


@plan_app.command("approve")
def plan_approve(
    tenant_id: str,
    account_id: str,
    plan_id: str,
    approved_by: Optional[str] = typer.Option(None, help="Approver identity"),
) -> None:
    services = _services()
    _finish(
        asyncio.run(
            services.commands.approve(tenant_id, account_id, plan_id, approved_by=approved_by)
        )
    )


@plan_app.command("pause")
def plan_pause(
    tenant_id: str, account_id: str, plan_id: str, reason: Optional[str] = None
) -> None:
    services = _services()
    _finish(asyncio.run(services.commands.pause(tenant_id, account_id, plan_id, reason)))


@plan_app.command("resume")
def plan_resume(tenant_id: str, account_id: str, plan_id: str) -> None:
    services = _services()
    _finish(asyncio.run(services.commands.resume(tenant_id, account_id, plan_id)))


@plan_app.command("abort")
def plan_abort(
    tenant_id: str, account_id: str, plan_id: str, reason: Optional[str] = None
) -> None:
    services = _services()
    _finish(asyncio.run(services.commands.abort(tenant_id, account_id, plan_id, reason)))


@plan_app.command("show")
def plan_show(tenant_id: str, account_id: str, plan_id: str) -> None:
    """Print a plan and its step attempt history as JSON."""

    async def _show(services: Services):
        plan = await services.repository.get_plan(tenant_id, account_id, plan_id)
        if plan is None:
            return None, []
        return plan, await services.orchestrator.list_plan_attempts(plan)

    plan, attempts = asyncio.run(_show(_services()))
    if plan is None:
        typer.secho("Plan not found", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _echo_json({"plan": plan.model_dump(mode="json"), "attempts": attempts})


@plan_app.command("list")
def plan_list(
    tenant_id: str,
    status: Optional[PlanStatus] = typer.Option(None, help="Filter by plan status"),
    account_id: Optional[str] = typer.Option(None, "--account", help="Filter by account"),
    limit: Optional[int] = typer.Option(None, help="Maximum number of plans"),
) -> None:
    """
    List plans of a tenant by status or by account.

    Example:
        plangov plan list tenant-1 --status ACTIVE
        plangov plan list tenant-1 --account acct-9
    """
    if status is None and account_id is None:
        typer.secho("Pass --status or --account", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    services = _services()
    if account_id is not None:
        plans = asyncio.run(
            services.repository.list_plans_by_account(tenant_id, account_id, limit)
        )
        if status is not None:
            plans = [p for p in plans if p.status == status]
    else:
        plans = asyncio.run(services.repository.list_plans_by_status(tenant_id, status, limit))

    if not plans:
        typer.echo("No plans found")
        return
    for plan in plans:
        typer.echo(f"{plan.plan_id}\t{plan.account_id}\t{plan.plan_type}\t{plan.status.value}")


@plan_app.command("ledger")
def plan_ledger(plan_id: str, limit: Optional[int] = None) -> None:
    """Print ledger entries for a plan, most recent first."""
    services = _services()
    entries = asyncio.run(services.ledger.query_by_plan(plan_id, limit))
    if not entries:
        typer.echo("No ledger entries found")
        return
    for entry in entries:
        typer.echo(
            f"{entry.timestamp.isoformat()}\t{entry.event_type.value}\t"
            f"{json.dumps(entry.data, sort_keys=True, default=str)}"
        )


# ---------------------------------------------------------------------------
# budget
@budget_app.command("reserve")
def budget_reserve(
    tenant_id: str,
    period_key: str,
    cost_class: CostClass,
    operation_id: str,
    amount: int = typer.Option(1, min=1),
    account_id: Optional[str] = typer.Option(None, "--account"),
    plan_id: Optional[str] = typer.Option(None, "--plan"),
    tool_id: Optional[str] = typer.Option(None, "--tool"),
) -> None:
    """
    Reserve budget for one operation.

    ``period_key`` is YYYY-MM-DD for daily budgets or YYYY-MM for monthly ones.
    Exits with code 2 on BLOCK.
    """
    request = ReserveRequest(
        scope=BudgetScope(
            tenant_id=tenant_id, account_id=account_id, plan_id=plan_id, tool_id=tool_id
        ),
        period_key=period_key,
        cost_class=cost_class,
        operation_id=operation_id,
        amount=amount,
    )
    services = _services()
    result = asyncio.run(services.budget.reserve(request))
    _echo_json(result.model_dump(mode="json"))
    if result.result == Verdict.BLOCK:
        raise typer.Exit(code=2)


# ---------------------------------------------------------------------------
# governance
@governance_app.command("validate")
def governance_validate(context_file: Path) -> None:
    """Run the validator gateway on a JSON validation context. Exits with code 2 on BLOCK."""
    if not context_file.exists():
        typer.secho("Context file does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    context = ValidatorContext.model_validate_json(context_file.read_text())
    services = _services()
    result = asyncio.run(services.gateway.run(context))
    _echo_json(result.model_dump(mode="json"))
    if result.aggregate == Verdict.BLOCK:
        raise typer.Exit(code=2)


if __name__ == "__main__":
    app()
