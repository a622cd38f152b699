"""Runtime wiring and scenario execution against a simulated ledger."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any
from uuid import uuid4

from yieldledger.adapters.base import StrategyAdapter
from yieldledger.adapters.remote import RemoteStrategyAdapter
from yieldledger.adapters.simulated import SimulatedAdapter
from yieldledger.config import Settings
from yieldledger.domain.events import LedgerEvent
from yieldledger.domain.models import AdapterKind
from yieldledger.errors import LedgerError, ScenarioError, SettingsError
from yieldledger.ledger import Ledger
from yieldledger.logging.event_sink import EventSink, JsonlEventSink, generate_plotly_report
from yieldledger.logging.logger import LedgerLogger
from yieldledger.state.sqlite_store import SqliteStateStore
from yieldledger.state.store import NoopStateStore, StateStore
from yieldledger.tokens import MAX_ALLOWANCE, InMemoryToken, Token

Step = Mapping[str, Any]


def load_scenario(path: str | Path) -> list[dict[str, Any]]:
    """Read a JSON scenario file and return its steps."""
    scenario_path = Path(path)
    if not scenario_path.exists():
        raise SettingsError(f"Scenario file not found: {scenario_path}")
    try:
        document = json.loads(scenario_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SettingsError(f"Scenario {scenario_path} is not valid JSON: {exc}") from exc
    steps = document.get("steps") if isinstance(document, dict) else document
    if not isinstance(steps, list) or not all(isinstance(step, dict) for step in steps):
        raise SettingsError(f"Scenario {scenario_path} must contain a list of step objects")
    return steps


class ScenarioRunner:
    """Executes scenario steps against a ledger wired to simulated backends.

    Administrative steps run as the configured controller unless a step
    names its own ``caller``. ``expect_error`` on a step names the error
    class the step must raise.
    """

    def __init__(self, ledger: Ledger, settings: Settings) -> None:
        self.ledger = ledger
        self.settings = settings
        self.tokens: dict[str, InMemoryToken] = {}
        self.adapters: dict[str, StrategyAdapter] = {}
        self.results: list[Any] = []
        self._handlers: dict[str, Callable[[Step], Any]] = {
            "mint": self._mint,
            "register_asset": self._register_asset,
            "remove_asset": self._remove_asset,
            "add_strategy": self._add_strategy,
            "remove_strategy": self._remove_strategy,
            "set_active_strategy": self._set_active_strategy,
            "deposit": self._deposit,
            "withdraw": self._withdraw,
            "transfer": self._transfer,
            "accrue_yield": self._accrue_yield,
            "realize_loss": self._realize_loss,
            "harvest": self._harvest,
            "rebalance": self._rebalance,
        }

    def run(self, steps: list[dict[str, Any]]) -> list[Any]:
        for position, step in enumerate(steps):
            self.results.append(self.execute(step, position))
        return self.results

    def execute(self, step: Step, position: int = 0) -> Any:
        op = str(step.get("op", "")).strip()
        handler = self._handlers.get(op)
        if handler is None:
            supported = ", ".join(sorted(self._handlers))
            raise ScenarioError(f"Step {position}: unknown op '{op}'. Supported: {supported}")
        expected = step.get("expect_error")
        if not expected:
            return handler(step)
        try:
            handler(step)
        except LedgerError as exc:
            if expected is True or type(exc).__name__ == expected:
                return exc
            raise
        raise ScenarioError(f"Step {position} ({op}) was expected to fail with {expected}")

    def token(self, symbol: str) -> InMemoryToken:
        if symbol not in self.tokens:
            self.tokens[symbol] = InMemoryToken(symbol=symbol)
        return self.tokens[symbol]

    def adapter(self, adapter_id: str) -> StrategyAdapter:
        adapter = self.adapters.get(adapter_id)
        if adapter is None:
            raise ScenarioError(f"Unknown adapter '{adapter_id}'")
        return adapter

    def simulated(self, adapter_id: str) -> SimulatedAdapter:
        adapter = self.adapter(adapter_id)
        if not isinstance(adapter, SimulatedAdapter):
            raise ScenarioError(
                f"Adapter '{adapter_id}' is remote; its service reports yield and losses"
            )
        return adapter

    def _admin(self, step: Step) -> str:
        return str(step.get("caller", self.settings.controller))

    def _mint(self, step: Step) -> None:
        self.token(_text(step, "token")).mint(_text(step, "account"), _amount(step, "amount"))

    def _register_asset(self, step: Step) -> int:
        return self.ledger.register_asset(self._admin(step), self.token(_text(step, "token")))

    def _remove_asset(self, step: Step) -> None:
        self.ledger.remove_asset(self._admin(step), _amount(step, "asset_id"))

    def _add_strategy(self, step: Step) -> int:
        asset_id = _amount(step, "asset_id")
        adapter_id = _text(step, "adapter")
        if adapter_id in self.adapters:
            raise ScenarioError(f"Adapter '{adapter_id}' already exists")
        pool = self.ledger.pool(asset_id)
        kind = str(step.get("kind", AdapterKind.LENDING.value))
        cap = step.get("liquidity_cap")
        token = self.token(pool.token)
        adapter: StrategyAdapter
        try:
            if step.get("url"):
                adapter = build_remote_adapter(
                    self.settings,
                    adapter_id,
                    str(step["url"]),
                    token,
                    self.ledger.account,
                    kind,
                )
            else:
                adapter = SimulatedAdapter(
                    adapter_id=adapter_id,
                    token=token,
                    ledger_account=self.ledger.account,
                    kind=AdapterKind(kind),
                    slippage_bps=int(step.get("slippage_bps", 0)),
                    liquidity_cap=int(cap) if cap is not None else None,
                )
        except ValueError as exc:
            raise ScenarioError(f"Adapter '{adapter_id}' is misconfigured: {exc}") from exc
        index = self.ledger.add_strategy(self._admin(step), asset_id, adapter)
        self.adapters[adapter_id] = adapter
        return index

    def _remove_strategy(self, step: Step) -> None:
        self.ledger.remove_strategy(
            self._admin(step), _amount(step, "asset_id"), _amount(step, "index")
        )

    def _set_active_strategy(self, step: Step) -> None:
        self.ledger.set_active_strategy(
            self._admin(step), _amount(step, "asset_id"), _amount(step, "index")
        )

    def _deposit(self, step: Step) -> int:
        holder = _text(step, "holder")
        asset_id = _amount(step, "asset_id")
        if step.get("approve", True):
            token = self.token(self.ledger.pool(asset_id).token)
            token.approve(holder, self.ledger.account, MAX_ALLOWANCE)
        return self.ledger.deposit(holder, asset_id, _amount(step, "amount"))

    def _withdraw(self, step: Step) -> int:
        holder = _text(step, "holder")
        asset_id = _amount(step, "asset_id")
        if step.get("shares", "all") == "all":
            shares = self.ledger.balance_of(holder, asset_id)
        else:
            shares = _amount(step, "shares")
        return self.ledger.withdraw(holder, asset_id, shares)

    def _transfer(self, step: Step) -> None:
        self.ledger.transfer(
            _text(step, "holder"),
            _text(step, "receiver"),
            _amount(step, "asset_id"),
            _amount(step, "shares"),
        )

    def _accrue_yield(self, step: Step) -> None:
        self.simulated(_text(step, "adapter")).accrue_yield(_amount(step, "amount"))

    def _realize_loss(self, step: Step) -> int:
        return self.simulated(_text(step, "adapter")).realize_loss(_amount(step, "amount"))

    def _harvest(self, step: Step) -> Any:
        return self.ledger.harvest(self._admin(step), _amount(step, "asset_id"))

    def _rebalance(self, step: Step) -> Any:
        return self.ledger.rebalance(
            self._admin(step),
            _amount(step, "asset_id"),
            _amount(step, "from_index"),
            _amount(step, "to_index"),
            _amount(step, "amount"),
        )


def run(settings: Settings, scenario_path: str | Path) -> int:
    """Execute a scenario file and write events, report, and final state."""
    steps = load_scenario(scenario_path)
    state_store: StateStore = build_state_store(settings)

    run_id = uuid4().hex
    run_directory = Path(settings.events_dir) / run_id
    run_directory.mkdir(parents=True, exist_ok=True)
    events_path = run_directory / "events.jsonl"
    report_path = run_directory / "report.html"

    event_sink = JsonlEventSink(str(events_path))
    human_logger = LedgerLogger(level=settings.log_level)
    ledger = build_ledger(settings, event_sink, human_logger, run_id)
    runner = ScenarioRunner(ledger, settings)

    state_store.record_run(run_id, settings.controller, str(scenario_path))
    human_logger.run_started(run_id, settings.controller)
    event_sink.emit(
        LedgerEvent(
            run_id=run_id,
            event_type="run_started",
            payload={"scenario": str(scenario_path), "steps": len(steps)},
        )
    )

    exit_code = 0
    try:
        runner.run(steps)
        for asset_id in ledger.asset_ids():
            human_logger.pool(ledger.pool(asset_id), ledger.total_assets(asset_id))
    except LedgerError as exc:
        human_logger.error(f"{type(exc).__name__}: {exc}")
        event_sink.emit(
            LedgerEvent(
                run_id=run_id,
                event_type="error",
                payload={"error": type(exc).__name__, "message": str(exc)},
            )
        )
        exit_code = 1
    finally:
        try:
            generate_plotly_report(str(events_path), str(report_path))
            state_store.save_snapshot(run_id, ledger.snapshot())
        finally:
            state_store.close()

    return exit_code


def show_portfolio(settings: Settings) -> int:
    """Print pools and share balances from the stored ledger snapshot."""
    if not settings.persist_state:
        raise SettingsError("--portfolio requires persisted state")
    human_logger = LedgerLogger(level=settings.log_level)
    state_store = build_state_store(settings)
    try:
        snapshot = state_store.load_snapshot()
    finally:
        state_store.close()
    if snapshot is None:
        human_logger.error(f"no stored ledger state in {settings.state_db_path}")
        return 1
    for pool in snapshot.pools:
        human_logger.pool(pool)
    for (holder, asset_id), shares in sorted(snapshot.balances.items()):
        human_logger.balance(holder, asset_id, shares)
    return 0


def build_ledger(
    settings: Settings,
    event_sink: EventSink | None = None,
    human_logger: LedgerLogger | None = None,
    run_id: str = "",
) -> Ledger:
    """Construct a ledger from settings."""
    return Ledger(
        controller=settings.controller,
        account=settings.ledger_account,
        event_sink=event_sink,
        logger=human_logger,
        run_id=run_id,
        virtual_shares=settings.virtual_shares,
        virtual_assets=settings.virtual_assets,
    )


def build_remote_adapter(
    settings: Settings,
    adapter_id: str,
    base_url: str,
    token: Token,
    ledger_account: str,
    kind: str = AdapterKind.LENDING.value,
) -> RemoteStrategyAdapter:
    """Construct a REST strategy adapter using the configured retry policy."""
    return RemoteStrategyAdapter(
        adapter_id=adapter_id,
        base_url=base_url,
        token=token,
        ledger_account=ledger_account,
        kind=kind,
        api_key=settings.adapter_api_key,
        timeout=settings.adapter_timeout,
        max_retries=settings.adapter_max_retries,
    )


def build_state_store(settings: Settings) -> StateStore:
    """Select state store implementation from settings."""
    if not settings.persist_state:
        return NoopStateStore()
    return SqliteStateStore(settings.state_db_path)


def _text(step: Step, key: str) -> str:
    value = step.get(key)
    if value is None or not str(value).strip():
        raise ScenarioError(f"Step '{step.get('op')}' requires '{key}'")
    return str(value).strip()


def _amount(step: Step, key: str) -> int:
    value = step.get(key)
    if isinstance(value, bool) or value is None:
        raise ScenarioError(f"Step '{step.get('op')}' requires integer '{key}'")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ScenarioError(f"Step '{step.get('op')}' has non-integer '{key}'") from exc
