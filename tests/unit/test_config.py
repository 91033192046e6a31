"""Tests for configuration loading."""

from datetime import timedelta

from plangov.adapters import get_execution_adapter
from plangov.adapters.redis import RedisExecutionAdapter
from plangov.budget import BudgetPeriod, CostClass
from plangov.config import EqRule, NoBackwardRule, PlangovConfig, load_config
from plangov.store import SQLiteStore, get_store


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PLANGOV_CONFIG", raising=False)
    monkeypatch.delenv("PLANGOV_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.store.database_url is None
    assert config.execution.backend == "inmemory"
    assert config.orchestrator.max_plans_per_run == 10
    assert config.plan_type_catalog().get("RENEWAL_DEFENSE").max_retries_per_step == 3
    assert config.plan_type_catalog().get("UNKNOWN") is None
    assert config.governance.ttl_for_source("anything") == (timedelta(days=14), timedelta(days=7))


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
execution:
  backend: redis
  redis:
    host: testhost
    port: 1234
orchestrator:
  max_plans_per_run: 3
  retry_backoff_base: 2.0
governance:
  restricted_fields: [ssn]
  contradiction_fields:
    - field: stage
      rule: {kind: eq}
    - field: tier
      rule: {kind: no_backward, ordering: [bronze, silver, gold]}
budgets:
  - scope: {tenant_id: t1}
    period: MONTH
    hard_cap: {EXPENSIVE: 100}
"""
    )
    monkeypatch.setenv("PLANGOV_CONFIG", str(config_path))

    config = load_config()
    assert config.execution.redis.host == "testhost"
    assert config.execution.redis.port == 1234
    assert config.orchestrator.max_plans_per_run == 3
    assert config.orchestrator.retry_backoff_base == 2.0
    assert config.governance.restricted_fields == ["ssn"]
    rules = [entry.rule for entry in config.governance.contradiction_fields]
    assert isinstance(rules[0], EqRule)
    assert isinstance(rules[1], NoBackwardRule)
    assert config.budgets[0].period == BudgetPeriod.MONTH
    assert config.budgets[0].hard_cap == {CostClass.EXPENSIVE: 100}


def test_get_execution_adapter_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
execution:
  backend: redis
  queue_prefix: test-intents
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("PLANGOV_CONFIG", str(config_path))
    monkeypatch.delenv("PLANGOV_EXECUTION_BACKEND", raising=False)

    adapter = get_execution_adapter(config=load_config())
    assert isinstance(adapter, RedisExecutionAdapter)
    assert adapter.host == "confighost"
    assert adapter.port == 6380
    assert adapter.queue_name("PREP_RENEWAL_BRIEF") == "test-intents:PREP_RENEWAL_BRIEF"


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("store:\n  database_url: postgresql://ignored/db\n")
    db_url = f"sqlite://{tmp_path / 'plans.db'}"
    monkeypatch.setenv("PLANGOV_DATABASE_URL", db_url)

    config = load_config(str(config_path))
    assert config.store.database_url == db_url
    assert isinstance(get_store(config=config), SQLiteStore)


def test_configs_do_not_share_state():
    first = PlangovConfig()
    second = PlangovConfig()
    first.plan_types[0].allowed_step_action_types.append("EXTRA")
    first.budgets[0].hard_cap[CostClass.CHEAP] = 1
    assert "EXTRA" not in second.plan_types[0].allowed_step_action_types
    assert second.budgets[0].hard_cap[CostClass.CHEAP] == 1000
