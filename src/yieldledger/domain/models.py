"""Core ledger domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Rounding(StrEnum):
    """Integer division rounding directions."""

    DOWN = "down"
    UP = "up"


class AdapterKind(StrEnum):
    """Backend families a strategy adapter can wrap."""

    LENDING = "lending"
    MARKET = "market"
    STAKING = "staking"
    LIQUIDITY = "liquidity"


@dataclass(frozen=True)
class StrategyRecord:
    """Registry entry as seen at a single point in time."""

    index: int
    adapter_id: str
    kind: AdapterKind
    active: bool = False


@dataclass(frozen=True)
class PoolSnapshot:
    """Read-only view of one pool's accounting state."""

    asset_id: int
    token: str
    principal: int
    share_supply: int
    active_index: int | None
    strategies: tuple[StrategyRecord, ...] = ()


@dataclass(frozen=True)
class HarvestReport:
    """Outcome of folding observed yield into principal."""

    asset_id: int
    previous_principal: int
    live_assets: int

    @property
    def yield_absorbed(self) -> int:
        return self.live_assets - self.previous_principal


@dataclass(frozen=True)
class RebalanceReport:
    """Outcome of moving capital between two adapters of one pool."""

    asset_id: int
    from_adapter: str
    to_adapter: str
    requested: int
    moved: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.moved


@dataclass(frozen=True)
class LedgerSnapshot:
    """Persistable ledger state: pools, share balances, and the asset-id table."""

    controller: str
    asset_ids: tuple[int, ...]
    pools: tuple[PoolSnapshot, ...] = ()
    balances: dict[tuple[str, int], int] = field(default_factory=dict)
