"""Multi-asset custodial ledger: pooled deposits, proportional shares, routed capital.

Every pool operation holds that pool's lock from the live-asset read through
the commit of new totals. State is written before any external adapter or
token call, and shares are burned before assets leave the ledger, so an
adapter that re-enters the same pool sees post-commit totals.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Self

from yieldledger.adapters.base import StrategyAdapter
from yieldledger.conversion import (
    VIRTUAL_ASSETS,
    VIRTUAL_SHARES,
    assets_to_shares,
    principal_portion,
    shares_to_assets,
)
from yieldledger.domain.events import LedgerEvent
from yieldledger.domain.models import (
    HarvestReport,
    LedgerSnapshot,
    PoolSnapshot,
    RebalanceReport,
    Rounding,
    StrategyRecord,
)
from yieldledger.errors import (
    AdapterError,
    AlreadyRegistered,
    AmountMustBePositive,
    AssetNotRegistered,
    ConfigurationError,
    InsufficientAllowance,
    InsufficientLiquidity,
    InsufficientShares,
    InvalidStrategy,
    InvariantViolated,
    NoSharesExist,
    PoolNotEmpty,
    SameStrategy,
    Unauthorized,
    ZeroAddress,
    ZeroAmount,
    ZeroShares,
)
from yieldledger.logging.event_sink import EventSink, NullEventSink
from yieldledger.logging.logger import LedgerLogger
from yieldledger.registry import StrategyRegistry
from yieldledger.tokens import MAX_ALLOWANCE, Token

DEFAULT_LEDGER_ACCOUNT = "ledger"


@dataclass
class Pool:
    """Mutable accounting state for one registered asset."""

    asset_id: int
    token: Token
    principal: int = 0
    share_supply: int = 0
    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[tuple[str, str], int] = field(default_factory=dict)
    registry: StrategyRegistry = field(default_factory=StrategyRegistry)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def to_snapshot(self) -> PoolSnapshot:
        return PoolSnapshot(
            asset_id=self.asset_id,
            token=self.token.symbol,
            principal=self.principal,
            share_supply=self.share_supply,
            active_index=self.registry.active_index,
            strategies=self.registry.records(),
        )


class Ledger:
    """Custodial ledger pooling deposits per asset and routing them to adapters."""

    def __init__(
        self,
        controller: str,
        account: str = DEFAULT_LEDGER_ACCOUNT,
        event_sink: EventSink | None = None,
        logger: LedgerLogger | None = None,
        run_id: str = "",
        virtual_shares: int = VIRTUAL_SHARES,
        virtual_assets: int = VIRTUAL_ASSETS,
    ) -> None:
        if not controller or not controller.strip():
            raise ZeroAddress("controller identity must be non-empty")
        if not account or not account.strip():
            raise ZeroAddress("ledger account must be non-empty")
        if virtual_shares <= 0 or virtual_assets <= 0:
            raise ValueError("virtual offsets must be positive")
        self._controller = controller
        self.account = account
        self.run_id = run_id
        self.virtual_shares = virtual_shares
        self.virtual_assets = virtual_assets
        self._event_sink: EventSink = event_sink or NullEventSink()
        self._logger = logger or LedgerLogger()
        self._lock = threading.RLock()
        self._pools: dict[int, Pool] = {}
        self._asset_ids: list[int] = []

    @property
    def controller(self) -> str:
        return self._controller

    # Administrative: asset lifecycle

    def register_asset(self, caller: str, token: Token | None) -> int:
        """Create a pool for ``token`` under the next sequential asset id."""
        with self._lock:
            self._require_controller(caller)
            if token is None or not str(getattr(token, "symbol", "")).strip():
                raise ZeroAddress("token reference must be non-empty")
            asset_id = len(self._asset_ids)
            if asset_id in self._pools:
                raise AlreadyRegistered(f"asset id {asset_id} is already registered")
            for pool in self._pools.values():
                if pool.token.symbol == token.symbol:
                    raise AlreadyRegistered(
                        f"token {token.symbol} already backs asset id {pool.asset_id}"
                    )
            self._pools[asset_id] = Pool(asset_id=asset_id, token=token)
            self._asset_ids.append(asset_id)
        self._logger.registry("asset_registered", asset_id, token.symbol)
        self._emit("asset_registered", asset_id, {"token": token.symbol})
        return asset_id

    def remove_asset(self, caller: str, asset_id: int) -> None:
        """Remove an empty pool and compact the asset-id table by swap-with-last."""
        with self._lock:
            self._require_controller(caller)
            pool = self._pool(asset_id)
            with pool.lock:
                if pool.share_supply != 0:
                    raise PoolNotEmpty(
                        f"asset id {asset_id} still has {pool.share_supply} shares outstanding"
                    )
                for adapter in pool.registry.adapters():
                    pool.token.approve(self.account, adapter.account, 0)
                del self._pools[asset_id]
                position = self._asset_ids.index(asset_id)
                self._asset_ids[position] = self._asset_ids[-1]
                self._asset_ids.pop()
        self._logger.registry("asset_removed", asset_id, pool.token.symbol)
        self._emit("asset_removed", asset_id, {"token": pool.token.symbol})

    def transfer_control(self, caller: str, new_controller: str) -> None:
        """Hand administrative rights to another identity."""
        with self._lock:
            self._require_controller(caller)
            self._require_identity(new_controller)
            previous = self._controller
            self._controller = new_controller
        self._emit("control_transferred", None, {"from": previous, "to": new_controller})

    # Administrative: strategy registry

    def add_strategy(self, caller: str, asset_id: int, adapter: StrategyAdapter | None) -> int:
        """Register an adapter for a pool and grant it a standing token allowance."""
        self._require_controller(caller)
        with self._locked(asset_id) as pool:
            index = pool.registry.add(adapter)
            pool.token.approve(self.account, adapter.account, MAX_ALLOWANCE)
        self._logger.registry("strategy_added", asset_id, f"{adapter.adapter_id} at {index}")
        self._emit(
            "strategy_added",
            asset_id,
            {"adapter": adapter.adapter_id, "kind": str(adapter.kind), "index": index},
        )
        return index

    def remove_strategy(self, caller: str, asset_id: int, index: int) -> None:
        """Remove an adapter by swap-with-last; remaining indices may change."""
        self._require_controller(caller)
        with self._locked(asset_id) as pool:
            removed = pool.registry.remove(index)
            if all(adapter is not removed for adapter in pool.registry.adapters()):
                pool.token.approve(self.account, removed.account, 0)
            active_index = pool.registry.active_index
        self._logger.registry("strategy_removed", asset_id, f"{removed.adapter_id} from {index}")
        self._emit(
            "strategy_removed",
            asset_id,
            {"adapter": removed.adapter_id, "index": index, "active_index": active_index},
        )

    def set_active_strategy(self, caller: str, asset_id: int, index: int) -> None:
        self._require_controller(caller)
        with self._locked(asset_id) as pool:
            pool.registry.set_active(index)
            adapter = pool.registry.resolve_active()
        self._logger.registry("strategy_activated", asset_id, f"{adapter.adapter_id} at {index}")
        self._emit("strategy_activated", asset_id, {"adapter": adapter.adapter_id, "index": index})

    def get_strategies(self, asset_id: int) -> tuple[StrategyRecord, ...]:
        """Return registry entries; indices are valid until the next removal."""
        with self._locked(asset_id) as pool:
            return pool.registry.records()

    def active_strategy(self, asset_id: int) -> StrategyAdapter | None:
        with self._locked(asset_id) as pool:
            return pool.registry.resolve_active()

    # User flows

    def deposit(self, caller: str, asset_id: int, amount: int) -> int:
        """Pool ``amount`` of the asset for ``caller`` and return the shares minted."""
        self._require_identity(caller)
        self._pool(asset_id)
        if amount <= 0:
            raise ZeroAmount("deposit amount must be positive")
        with self._locked(asset_id) as pool:
            live_assets = self._live_assets(pool)
            shares = self._to_shares(amount, pool.share_supply, live_assets, Rounding.DOWN)
            if shares <= 0:
                raise ZeroShares(f"deposit of {amount} would mint zero shares")
            adapter = pool.registry.resolve_active()

            pool.principal += amount
            pool.share_supply += shares
            self._credit(pool, caller, shares)
            pulled = False
            try:
                pool.token.transfer_from(self.account, caller, self.account, amount)
                pulled = True
                if adapter is not None:
                    adapter.deposit(amount)
            except Exception:
                pool.principal -= amount
                pool.share_supply -= shares
                self._debit(pool, caller, shares)
                if pulled:
                    pool.token.transfer(self.account, caller, amount)
                raise
            principal_after, supply_after = pool.principal, pool.share_supply

        adapter_id = adapter.adapter_id if adapter is not None else None
        routed = amount if adapter is not None else 0
        self._logger.deposit(asset_id, caller, amount, shares, adapter_id)
        self._emit(
            "deposit_routed",
            asset_id,
            {
                "holder": caller,
                "adapter": adapter_id,
                "shares_minted": shares,
                "amount_routed": routed,
                "amount": amount,
                "principal": principal_after,
                "share_supply": supply_after,
            },
        )
        return shares

    def withdraw(self, caller: str, asset_id: int, shares: int) -> int:
        """Burn ``shares`` from ``caller`` and pay out their gross asset value."""
        self._require_identity(caller)
        self._pool(asset_id)
        if shares <= 0:
            raise ZeroAmount("withdraw share amount must be positive")
        with self._locked(asset_id) as pool:
            balance = pool.balances.get(caller, 0)
            if balance < shares:
                raise InsufficientShares(
                    f"{caller} holds {balance} shares of asset {asset_id}, needs {shares}"
                )
            if pool.share_supply == 0:
                raise NoSharesExist(f"asset id {asset_id} has no shares outstanding")
            live_assets = self._live_assets(pool)
            assets = self._to_assets(shares, pool.share_supply, live_assets, Rounding.UP)
            principal_removed = principal_portion(shares, pool.principal, pool.share_supply)

            self._debit(pool, caller, shares)
            pool.principal -= principal_removed
            pool.share_supply -= shares
            pulled = 0
            try:
                idle = pool.token.balance_of(self.account)
                if idle < assets:
                    adapter = pool.registry.resolve_active()
                    if adapter is not None:
                        pulled = int(adapter.withdraw(assets - idle))
                    idle = pool.token.balance_of(self.account)
                    if idle < assets:
                        raise InsufficientLiquidity(
                            f"asset id {asset_id} can pay {idle} of {assets} owed"
                        )
                pool.token.transfer(self.account, caller, assets)
            except Exception:
                pool.principal += principal_removed
                pool.share_supply += shares
                self._credit(pool, caller, shares)
                raise
            principal_after, supply_after = pool.principal, pool.share_supply

        self._logger.withdraw(asset_id, caller, shares, assets, pulled)
        self._emit(
            "withdrawn",
            asset_id,
            {
                "holder": caller,
                "shares_burned": shares,
                "assets": assets,
                "principal_removed": principal_removed,
                "pulled_from_adapter": pulled,
                "principal": principal_after,
                "share_supply": supply_after,
            },
        )
        return assets

    def transfer(self, caller: str, receiver: str, asset_id: int, shares: int) -> None:
        """Move shares of one pool between holders."""
        self._require_identity(caller)
        self._require_identity(receiver)
        self._pool(asset_id)
        if shares <= 0:
            raise ZeroAmount("transfer share amount must be positive")
        with self._locked(asset_id) as pool:
            self._move_shares(pool, caller, receiver, shares)
        self._emit(
            "shares_transferred",
            asset_id,
            {"from": caller, "to": receiver, "shares": shares},
        )

    def approve(self, caller: str, spender: str, asset_id: int, shares: int) -> None:
        """Allow ``spender`` to move up to ``shares`` of ``caller``'s position."""
        self._require_identity(caller)
        self._require_identity(spender)
        self._pool(asset_id)
        if shares < 0:
            raise ZeroAmount("allowance must be non-negative")
        with self._locked(asset_id) as pool:
            key = (caller, spender)
            if shares == 0:
                pool.allowances.pop(key, None)
            else:
                pool.allowances[key] = shares

    def transfer_from(
        self,
        caller: str,
        owner: str,
        receiver: str,
        asset_id: int,
        shares: int,
    ) -> None:
        """Move ``owner``'s shares on their behalf using an allowance."""
        self._require_identity(caller)
        self._require_identity(owner)
        self._require_identity(receiver)
        self._pool(asset_id)
        if shares <= 0:
            raise ZeroAmount("transfer share amount must be positive")
        with self._locked(asset_id) as pool:
            key = (owner, caller)
            allowed = pool.allowances.get(key, 0)
            if caller != owner and allowed < shares:
                raise InsufficientAllowance(
                    f"{caller} may move {allowed} of {owner}'s shares, requested {shares}"
                )
            self._move_shares(pool, owner, receiver, shares)
            if caller != owner:
                remaining = allowed - shares
                if remaining:
                    pool.allowances[key] = remaining
                else:
                    del pool.allowances[key]
        self._emit(
            "shares_transferred",
            asset_id,
            {"from": owner, "to": receiver, "shares": shares, "operator": caller},
        )

    # Administrative: yield and capital movement

    def harvest(self, caller: str, asset_id: int) -> HarvestReport:
        """Fold accrued yield into principal; an apparent loss is fatal."""
        self._require_controller(caller)
        with self._locked(asset_id) as pool:
            live_assets = self._live_assets(pool)
            if live_assets < pool.principal:
                raise InvariantViolated(
                    f"asset id {asset_id} live assets {live_assets} are below "
                    f"principal {pool.principal}"
                )
            report = HarvestReport(
                asset_id=asset_id,
                previous_principal=pool.principal,
                live_assets=live_assets,
            )
            pool.principal = live_assets
            share_supply = pool.share_supply
        self._logger.harvest(asset_id, report.previous_principal, report.live_assets)
        self._emit(
            "harvested",
            asset_id,
            {
                "previous_principal": report.previous_principal,
                "principal": report.live_assets,
                "yield": report.yield_absorbed,
                "share_supply": share_supply,
            },
        )
        return report

    def rebalance(
        self,
        caller: str,
        asset_id: int,
        from_index: int,
        to_index: int,
        amount: int,
    ) -> RebalanceReport:
        """Move capital between two adapters without touching principal or shares."""
        self._require_controller(caller)
        self._pool(asset_id)
        if from_index == to_index:
            raise SameStrategy("rebalance source and destination must differ")
        if amount <= 0:
            raise AmountMustBePositive("rebalance amount must be positive")
        with self._locked(asset_id) as pool:
            source = pool.registry.resolve(from_index)
            destination = pool.registry.resolve(to_index)
            if source is None or destination is None:
                raise InvalidStrategy(
                    f"rebalance indices {from_index} -> {to_index} do not both resolve"
                )
            idle_before = pool.token.balance_of(self.account)
            returned = int(source.withdraw(amount))
            received = pool.token.balance_of(self.account) - idle_before
            if returned < 0 or received < returned:
                raise AdapterError(
                    f"adapter {source.adapter_id} reported {returned} returned "
                    f"but the ledger received {received}"
                )
            if returned:
                destination.deposit(returned)
            report = RebalanceReport(
                asset_id=asset_id,
                from_adapter=source.adapter_id,
                to_adapter=destination.adapter_id,
                requested=amount,
                moved=returned,
            )
            principal, share_supply = pool.principal, pool.share_supply
        self._logger.rebalance(
            asset_id, report.from_adapter, report.to_adapter, report.requested, report.moved
        )
        self._emit(
            "rebalanced",
            asset_id,
            {
                "from_adapter": report.from_adapter,
                "to_adapter": report.to_adapter,
                "requested": report.requested,
                "moved": report.moved,
                "principal": principal,
                "share_supply": share_supply,
            },
        )
        return report

    # Queries

    def preview_deposit(self, asset_id: int, assets: int) -> int:
        """Shares a deposit of ``assets`` would mint right now."""
        with self._locked(asset_id) as pool:
            live_assets = self._live_assets(pool)
            return self._to_shares(assets, pool.share_supply, live_assets, Rounding.DOWN)

    def preview_withdraw(self, asset_id: int, shares: int) -> int:
        """Gross assets a withdrawal of ``shares`` would pay right now."""
        with self._locked(asset_id) as pool:
            live_assets = self._live_assets(pool)
            return self._to_assets(shares, pool.share_supply, live_assets, Rounding.UP)

    def convert_to_shares(self, asset_id: int, assets: int) -> int:
        with self._locked(asset_id) as pool:
            live_assets = self._live_assets(pool)
            return self._to_shares(assets, pool.share_supply, live_assets, Rounding.DOWN)

    def convert_to_assets(self, asset_id: int, shares: int) -> int:
        with self._locked(asset_id) as pool:
            live_assets = self._live_assets(pool)
            return self._to_assets(shares, pool.share_supply, live_assets, Rounding.DOWN)

    def total_assets(self, asset_id: int) -> int:
        """Live assets: idle balance plus every adapter's reported balance."""
        with self._locked(asset_id) as pool:
            return self._live_assets(pool)

    def idle_assets(self, asset_id: int) -> int:
        pool = self._pool(asset_id)
        return pool.token.balance_of(self.account)

    def balance_of(self, holder: str, asset_id: int) -> int:
        return self._pool(asset_id).balances.get(holder, 0)

    def allowance(self, owner: str, spender: str, asset_id: int) -> int:
        return self._pool(asset_id).allowances.get((owner, spender), 0)

    def total_supply(self, asset_id: int) -> int:
        return self._pool(asset_id).share_supply

    def holders(self, asset_id: int) -> dict[str, int]:
        with self._locked(asset_id) as pool:
            return dict(sorted(pool.balances.items()))

    def pool(self, asset_id: int) -> PoolSnapshot:
        with self._locked(asset_id) as pool:
            return pool.to_snapshot()

    def asset_ids(self) -> tuple[int, ...]:
        with self._lock:
            return tuple(self._asset_ids)

    # Persistence

    def snapshot(self) -> LedgerSnapshot:
        pools = []
        balances: dict[tuple[str, int], int] = {}
        with self._lock:
            for asset_id in sorted(self._pools):
                pool = self._pools[asset_id]
                with pool.lock:
                    pools.append(pool.to_snapshot())
                    for holder, shares in pool.balances.items():
                        balances[(holder, asset_id)] = shares
            return LedgerSnapshot(
                controller=self._controller,
                asset_ids=tuple(self._asset_ids),
                pools=tuple(pools),
                balances=balances,
            )

    @classmethod
    def restore(
        cls,
        snapshot: LedgerSnapshot,
        tokens: Mapping[str, Token],
        adapters: Mapping[str, StrategyAdapter],
        **kwargs: Any,
    ) -> Self:
        """Rebuild a ledger from a snapshot and live token/adapter handles."""
        ledger = cls(controller=snapshot.controller, **kwargs)
        for pool_snapshot in snapshot.pools:
            token = tokens.get(pool_snapshot.token)
            if token is None:
                raise ConfigurationError(f"no token handle for {pool_snapshot.token}")
            pool = Pool(
                asset_id=pool_snapshot.asset_id,
                token=token,
                principal=pool_snapshot.principal,
                share_supply=pool_snapshot.share_supply,
            )
            for record in sorted(pool_snapshot.strategies, key=lambda item: item.index):
                adapter = adapters.get(record.adapter_id)
                if adapter is None:
                    raise ConfigurationError(f"no adapter handle for {record.adapter_id}")
                pool.registry.add(adapter)
                token.approve(ledger.account, adapter.account, MAX_ALLOWANCE)
            if pool_snapshot.active_index is not None:
                pool.registry.set_active(pool_snapshot.active_index)
            pool.balances = {
                holder: shares
                for (holder, held_asset_id), shares in snapshot.balances.items()
                if held_asset_id == pool.asset_id and shares
            }
            ledger._pools[pool.asset_id] = pool
        ledger._asset_ids = list(snapshot.asset_ids)
        return ledger

    # Internals

    def _pool(self, asset_id: int) -> Pool:
        pool = self._pools.get(asset_id)
        if pool is None:
            raise AssetNotRegistered(f"asset id {asset_id} is not registered")
        return pool

    @contextmanager
    def _locked(self, asset_id: int) -> Iterator[Pool]:
        pool = self._pool(asset_id)
        with pool.lock:
            if self._pools.get(asset_id) is not pool:
                raise AssetNotRegistered(f"asset id {asset_id} was removed")
            yield pool

    def _live_assets(self, pool: Pool) -> int:
        return pool.registry.total_assets() + pool.token.balance_of(self.account)

    def _to_shares(
        self, assets: int, share_supply: int, live_assets: int, rounding: Rounding
    ) -> int:
        return assets_to_shares(
            assets,
            share_supply,
            live_assets,
            rounding,
            virtual_shares=self.virtual_shares,
            virtual_assets=self.virtual_assets,
        )

    def _to_assets(
        self, shares: int, share_supply: int, live_assets: int, rounding: Rounding
    ) -> int:
        return shares_to_assets(
            shares,
            share_supply,
            live_assets,
            rounding,
            virtual_shares=self.virtual_shares,
            virtual_assets=self.virtual_assets,
        )

    def _move_shares(self, pool: Pool, sender: str, receiver: str, shares: int) -> None:
        balance = pool.balances.get(sender, 0)
        if balance < shares:
            raise InsufficientShares(
                f"{sender} holds {balance} shares of asset {pool.asset_id}, needs {shares}"
            )
        self._debit(pool, sender, shares)
        self._credit(pool, receiver, shares)

    @staticmethod
    def _credit(pool: Pool, holder: str, shares: int) -> None:
        pool.balances[holder] = pool.balances.get(holder, 0) + shares

    @staticmethod
    def _debit(pool: Pool, holder: str, shares: int) -> None:
        remaining = pool.balances.get(holder, 0) - shares
        if remaining:
            pool.balances[holder] = remaining
        else:
            pool.balances.pop(holder, None)

    def _require_controller(self, caller: str) -> None:
        if caller != self._controller:
            raise Unauthorized(f"{caller!r} is not the ledger controller")

    @staticmethod
    def _require_identity(identity: str) -> None:
        if not identity or not str(identity).strip():
            raise ZeroAddress("holder identity must be non-empty")

    def _emit(self, event_type: str, asset_id: int | None, payload: dict[str, Any]) -> None:
        self._event_sink.emit(
            LedgerEvent(
                run_id=self.run_id,
                event_type=event_type,
                asset_id=asset_id,
                payload=payload,
            )
        )
