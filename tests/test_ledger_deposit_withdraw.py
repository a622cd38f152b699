from __future__ import annotations

import threading

import pytest

from yieldledger.adapters.simulated import SimulatedAdapter
from yieldledger.errors import (
    AdapterError,
    AssetNotRegistered,
    InsufficientLiquidity,
    InsufficientShares,
    NoSharesExist,
    ZeroAddress,
    ZeroAmount,
    ZeroShares,
)
from yieldledger.ledger import Ledger

from conftest import CONTROLLER


class FailingDepositAdapter(SimulatedAdapter):
    def deposit(self, amount: int) -> None:
        raise AdapterError(f"backend rejected deposit of {amount}")


class ReentrantAdapter(SimulatedAdapter):
    """Re-enters the ledger's withdraw from inside its own withdraw."""

    ledger: Ledger | None = None
    holder: str = ""
    asset_id: int = 0
    reentry_error: Exception | None = None

    def withdraw(self, amount: int) -> int:
        if self.ledger is not None and self.reentry_error is None:
            try:
                self.ledger.withdraw(self.holder, self.asset_id, amount)
            except InsufficientShares as exc:
                self.reentry_error = exc
        return super().withdraw(amount)


def test_first_cycle_returns_exact_deposit(ledger, usdc, usdc_pool, fund) -> None:
    asset_id, adapter = usdc_pool
    fund(usdc, "alice", 100)

    shares = ledger.deposit("alice", asset_id, 100)

    assert shares == 100
    assert adapter.total_assets() == 100
    assert ledger.pool(asset_id).principal == 100

    assets = ledger.withdraw("alice", asset_id, shares)

    assert assets == 100
    assert usdc.balance_of("alice") == 100
    pool = ledger.pool(asset_id)
    assert pool.principal == 0
    assert pool.share_supply == 0
    assert ledger.balance_of("alice", asset_id) == 0


def test_deposit_emits_routing_event(ledger, usdc, usdc_pool, fund, events) -> None:
    asset_id, _ = usdc_pool
    fund(usdc, "alice", 100)

    ledger.deposit("alice", asset_id, 100)

    (event,) = events.of_type("deposit_routed")
    assert event.asset_id == asset_id
    assert event.payload["adapter"] == "aave-usdc"
    assert event.payload["shares_minted"] == 100
    assert event.payload["amount_routed"] == 100


def test_deposit_without_adapter_stays_idle(ledger, usdc, fund, events) -> None:
    asset_id = ledger.register_asset(CONTROLLER, usdc)
    fund(usdc, "alice", 100)

    ledger.deposit("alice", asset_id, 100)

    assert ledger.idle_assets(asset_id) == 100
    assert ledger.total_assets(asset_id) == 100
    (event,) = events.of_type("deposit_routed")
    assert event.payload["adapter"] is None
    assert event.payload["amount_routed"] == 0


def test_deposit_rejects_zero_and_unknown_asset(ledger, usdc, usdc_pool, fund) -> None:
    asset_id, _ = usdc_pool
    fund(usdc, "alice", 100)

    with pytest.raises(ZeroAmount):
        ledger.deposit("alice", asset_id, 0)
    with pytest.raises(AssetNotRegistered):
        ledger.deposit("alice", 99, 10)
    with pytest.raises(ZeroAddress):
        ledger.deposit("", asset_id, 10)


def test_dust_deposit_that_mints_nothing_is_rejected(ledger, usdc, usdc_pool, fund) -> None:
    asset_id, adapter = usdc_pool
    fund(usdc, "alice", 100)
    fund(usdc, "bob", 1)
    ledger.deposit("alice", asset_id, 100)
    adapter.accrue_yield(1_000)

    with pytest.raises(ZeroShares):
        ledger.deposit("bob", asset_id, 1)

    assert usdc.balance_of("bob") == 1
    assert ledger.pool(asset_id).principal == 100
    assert ledger.total_supply(asset_id) == 100


def test_share_supply_equals_sum_of_holder_balances(ledger, usdc, usdc_pool, fund) -> None:
    asset_id, _ = usdc_pool
    for holder, amount in (("alice", 100), ("bob", 37), ("carol", 250)):
        fund(usdc, holder, amount)

    operations = [
        ("deposit", "alice", 100),
        ("deposit", "bob", 37),
        ("withdraw", "alice", 40),
        ("deposit", "carol", 250),
        ("withdraw", "bob", 37),
        ("withdraw", "carol", 1),
        ("withdraw", "alice", 60),
    ]
    for action, holder, amount in operations:
        getattr(ledger, action)(holder, asset_id, amount)
        assert sum(ledger.holders(asset_id).values()) == ledger.total_supply(asset_id)

    assert ledger.holders(asset_id) == {"carol": 249}
    assert ledger.pool(asset_id).principal == 249


def test_withdraw_rejects_excess_and_zero_shares(ledger, usdc, usdc_pool, fund) -> None:
    asset_id, _ = usdc_pool
    fund(usdc, "alice", 100)
    ledger.deposit("alice", asset_id, 100)

    with pytest.raises(InsufficientShares):
        ledger.withdraw("alice", asset_id, 101)
    with pytest.raises(InsufficientShares):
        ledger.withdraw("bob", asset_id, 1)
    with pytest.raises(ZeroAmount):
        ledger.withdraw("alice", asset_id, 0)


def test_withdraw_pulls_shortfall_from_active_adapter(
    ledger, usdc, usdc_pool, fund, events
) -> None:
    asset_id, adapter = usdc_pool
    fund(usdc, "alice", 100)
    ledger.deposit("alice", asset_id, 100)

    assert ledger.withdraw("alice", asset_id, 40) == 40

    assert adapter.total_assets() == 60
    (event,) = events.of_type("withdrawn")
    assert event.payload["pulled_from_adapter"] == 40
    assert event.payload["principal"] == 60


def test_withdraw_spends_idle_balance_before_adapter(
    ledger, usdc, fund, make_adapter
) -> None:
    asset_id = ledger.register_asset(CONTROLLER, usdc)
    fund(usdc, "alice", 150)
    ledger.deposit("alice", asset_id, 100)
    adapter = make_adapter(usdc, "aave-usdc")
    ledger.add_strategy(CONTROLLER, asset_id, adapter)
    ledger.deposit("alice", asset_id, 50)

    assert ledger.withdraw("alice", asset_id, 120) == 120

    assert ledger.idle_assets(asset_id) == 0
    assert adapter.total_assets() == 30


def test_withdraw_without_liquidity_rolls_back(ledger, usdc, fund, make_adapter) -> None:
    asset_id = ledger.register_asset(CONTROLLER, usdc)
    adapter = make_adapter(usdc, "capped", liquidity_cap=10)
    ledger.add_strategy(CONTROLLER, asset_id, adapter)
    fund(usdc, "alice", 100)
    ledger.deposit("alice", asset_id, 100)

    with pytest.raises(InsufficientLiquidity):
        ledger.withdraw("alice", asset_id, 100)

    assert ledger.balance_of("alice", asset_id) == 100
    pool = ledger.pool(asset_id)
    assert pool.principal == 100
    assert pool.share_supply == 100
    assert usdc.balance_of("alice") == 0
    assert ledger.idle_assets(asset_id) == 10
    assert ledger.total_assets(asset_id) == 100


def test_failed_routing_refunds_and_rolls_back(ledger, usdc, fund) -> None:
    asset_id = ledger.register_asset(CONTROLLER, usdc)
    adapter = FailingDepositAdapter(adapter_id="broken", token=usdc, ledger_account="ledger")
    ledger.add_strategy(CONTROLLER, asset_id, adapter)
    fund(usdc, "alice", 100)

    with pytest.raises(AdapterError):
        ledger.deposit("alice", asset_id, 100)

    assert usdc.balance_of("alice") == 100
    assert ledger.balance_of("alice", asset_id) == 0
    assert ledger.pool(asset_id).principal == 0
    assert ledger.total_supply(asset_id) == 0
    assert ledger.idle_assets(asset_id) == 0


def test_reentrant_withdraw_cannot_spend_burned_shares(ledger, usdc, fund) -> None:
    asset_id = ledger.register_asset(CONTROLLER, usdc)
    adapter = ReentrantAdapter(adapter_id="reentrant", token=usdc, ledger_account="ledger")
    ledger.add_strategy(CONTROLLER, asset_id, adapter)
    fund(usdc, "alice", 100)
    ledger.deposit("alice", asset_id, 100)
    adapter.ledger = ledger
    adapter.holder = "alice"
    adapter.asset_id = asset_id

    assert ledger.withdraw("alice", asset_id, 100) == 100

    assert isinstance(adapter.reentry_error, InsufficientShares)
    assert usdc.balance_of("alice") == 100
    assert ledger.total_supply(asset_id) == 0


def test_previews_and_conversions(ledger, usdc, usdc_pool, fund) -> None:
    asset_id, adapter = usdc_pool

    assert ledger.preview_deposit(asset_id, 500) == 500
    with pytest.raises(NoSharesExist):
        ledger.convert_to_assets(asset_id, 1)
    with pytest.raises(NoSharesExist):
        ledger.preview_withdraw(asset_id, 1)

    fund(usdc, "alice", 150)
    ledger.deposit("alice", asset_id, 150)
    adapter.accrue_yield(30)

    # 100 * 181 / 151 = 119.87
    assert ledger.convert_to_assets(asset_id, 100) == 119
    assert ledger.preview_withdraw(asset_id, 100) == 120
    # 120 * 151 / 181 = 100.11
    assert ledger.convert_to_shares(asset_id, 120) == 100
    assert ledger.preview_deposit(asset_id, 120) == 100


def test_concurrent_deposits_keep_totals_consistent(ledger, usdc, usdc_pool, fund) -> None:
    asset_id, adapter = usdc_pool
    holders = [f"holder-{index}" for index in range(8)]
    for holder in holders:
        fund(usdc, holder, 100)

    def deposit_many(holder: str) -> None:
        for _ in range(10):
            ledger.deposit(holder, asset_id, 10)

    threads = [threading.Thread(target=deposit_many, args=(holder,)) for holder in holders]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    pool = ledger.pool(asset_id)
    assert pool.principal == 800
    assert pool.share_supply == 800
    assert sum(ledger.holders(asset_id).values()) == 800
    assert adapter.total_assets() == 800


def test_holders_and_snapshot_are_readable_during_deposits(
    ledger, usdc, usdc_pool, fund
) -> None:
    asset_id, _ = usdc_pool
    holders = [f"holder-{index}" for index in range(8)]
    for holder in holders:
        fund(usdc, holder, 100)
    done = threading.Event()
    views: list[int] = []

    def read_positions() -> None:
        while not done.is_set():
            views.append(sum(ledger.holders(asset_id).values()))
            views.append(sum(ledger.snapshot().balances.values()))

    reader = threading.Thread(target=read_positions)
    reader.start()
    writers = [
        threading.Thread(target=lambda h=holder: ledger.deposit(h, asset_id, 100))
        for holder in holders
    ]
    for writer in writers:
        writer.start()
    for writer in writers:
        writer.join()
    done.set()
    reader.join()

    assert all(total % 100 == 0 for total in views)
    assert sum(ledger.snapshot().balances.values()) == 800
