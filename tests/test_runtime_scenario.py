from __future__ import annotations

import json
from pathlib import Path

import pytest

from yieldledger.adapters.remote import RemoteStrategyAdapter
from yieldledger.config import Settings
from yieldledger.errors import InsufficientShares, ScenarioError, SettingsError
from yieldledger.logging.event_sink import load_events
from yieldledger.runtime import (
    ScenarioRunner,
    build_ledger,
    load_scenario,
    run,
    show_portfolio,
)
from yieldledger.state.sqlite_store import SqliteStateStore

SCENARIO = Path(__file__).resolve().parents[1] / "scenarios" / "two_holders_yield.json"


def _settings(tmp_path: Path, **overrides: object) -> Settings:
    return Settings(
        events_dir=str(tmp_path / "runs"),
        state_db_path=str(tmp_path / "state.db"),
        **overrides,
    )


def _write_steps(tmp_path: Path, steps: list[dict]) -> Path:
    path = tmp_path / "scenario.json"
    path.write_text(json.dumps({"steps": steps}), encoding="utf-8")
    return path


def _run_events(settings: Settings) -> list[dict]:
    (run_dir,) = list(Path(settings.events_dir).iterdir())
    return load_events(run_dir / "events.jsonl")


def test_bundled_scenario_pays_out_yield_and_empties_pool(tmp_path: Path) -> None:
    settings = _settings(tmp_path)

    assert run(settings, SCENARIO) == 0

    events = _run_events(settings)
    withdrawals = [event for event in events if event["event_type"] == "withdrawn"]
    assert [(event["payload"]["holder"], event["payload"]["assets"]) for event in withdrawals] == [
        ("alice", 120),
        ("bob", 60),
    ]

    store = SqliteStateStore(settings.state_db_path)
    snapshot = store.load_snapshot()
    store.close()
    assert snapshot.balances == {}
    (pool,) = snapshot.pools
    assert pool.principal == 0
    assert pool.share_supply == 0
    assert [record.adapter_id for record in pool.strategies] == ["aave-usdc", "morpho-usdc"]


def test_failing_step_exits_nonzero_and_records_error(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    scenario = _write_steps(
        tmp_path,
        [
            {"op": "mint", "token": "USDC", "account": "alice", "amount": 100},
            {"op": "register_asset", "token": "USDC"},
            {"op": "add_strategy", "asset_id": 0, "adapter": "aave-usdc"},
            {"op": "deposit", "holder": "alice", "asset_id": 0, "amount": 100},
            {"op": "realize_loss", "adapter": "aave-usdc", "amount": 1},
            {"op": "harvest", "asset_id": 0},
        ],
    )

    assert run(settings, scenario) == 1

    (error,) = [event for event in _run_events(settings) if event["event_type"] == "error"]
    assert error["payload"]["error"] == "InvariantViolated"
    # state reached before the failure is still persisted
    store = SqliteStateStore(settings.state_db_path)
    snapshot = store.load_snapshot()
    store.close()
    assert snapshot.balances == {("alice", 0): 100}


def test_runner_checks_expected_errors(tmp_path: Path) -> None:
    settings = _settings(tmp_path, persist_state=False)
    runner = ScenarioRunner(build_ledger(settings), settings)
    runner.execute({"op": "register_asset", "token": "USDC"})

    outcome = runner.execute(
        {"op": "withdraw", "holder": "alice", "asset_id": 0, "shares": 1, "expect_error": True}
    )
    assert isinstance(outcome, InsufficientShares)

    with pytest.raises(ScenarioError, match="expected to fail"):
        runner.execute(
            {
                "op": "mint",
                "token": "USDC",
                "account": "alice",
                "amount": 1,
                "expect_error": "TokenError",
            }
        )
    with pytest.raises(InsufficientShares):
        runner.execute(
            {
                "op": "withdraw",
                "holder": "alice",
                "asset_id": 0,
                "shares": 1,
                "expect_error": "Unauthorized",
            }
        )


def test_runner_admin_caller_override(tmp_path: Path) -> None:
    settings = _settings(tmp_path, persist_state=False)
    runner = ScenarioRunner(build_ledger(settings), settings)

    outcome = runner.execute(
        {
            "op": "register_asset",
            "token": "USDC",
            "caller": "mallory",
            "expect_error": "Unauthorized",
        }
    )

    assert type(outcome).__name__ == "Unauthorized"
    assert runner.ledger.asset_ids() == ()


def test_runner_wires_remote_adapters_from_settings(tmp_path: Path) -> None:
    settings = _settings(tmp_path, persist_state=False, adapter_timeout=3, adapter_max_retries=2)
    runner = ScenarioRunner(build_ledger(settings), settings)
    runner.execute({"op": "register_asset", "token": "USDC"})

    runner.execute(
        {
            "op": "add_strategy",
            "asset_id": 0,
            "adapter": "pendle-usdc",
            "kind": "liquidity",
            "url": "https://strategies.example/pendle",
        }
    )

    adapter = runner.ledger.active_strategy(0)
    assert isinstance(adapter, RemoteStrategyAdapter)
    assert adapter.timeout == 3
    assert adapter.max_retries == 2
    with pytest.raises(ScenarioError, match="is remote"):
        runner.execute({"op": "accrue_yield", "adapter": "pendle-usdc", "amount": 1})


@pytest.mark.parametrize(
    "step",
    [
        {"op": "liquidate"},
        {"op": "mint", "token": "USDC", "account": "alice"},
        {"op": "mint", "token": "USDC", "account": "alice", "amount": "lots"},
        {"op": "accrue_yield", "adapter": "unknown", "amount": 1},
    ],
)
def test_runner_rejects_malformed_steps(tmp_path: Path, step: dict) -> None:
    settings = _settings(tmp_path, persist_state=False)
    runner = ScenarioRunner(build_ledger(settings), settings)

    with pytest.raises(ScenarioError):
        runner.execute(step)


def test_load_scenario_accepts_bare_list_and_rejects_bad_shapes(tmp_path: Path) -> None:
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps([{"op": "mint"}]), encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"steps": "mint"}), encoding="utf-8")

    assert load_scenario(bare) == [{"op": "mint"}]
    with pytest.raises(SettingsError, match="list of step objects"):
        load_scenario(bad)


def test_show_portfolio_requires_stored_state(tmp_path: Path) -> None:
    settings = _settings(tmp_path)

    assert show_portfolio(settings) == 1

    run(settings, SCENARIO)
    assert show_portfolio(settings) == 0
