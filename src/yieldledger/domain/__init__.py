"""Domain models and event types."""

from .events import LedgerEvent
from .models import (
    AdapterKind,
    HarvestReport,
    LedgerSnapshot,
    PoolSnapshot,
    RebalanceReport,
    Rounding,
    StrategyRecord,
)

__all__ = [
    "AdapterKind",
    "HarvestReport",
    "LedgerEvent",
    "LedgerSnapshot",
    "PoolSnapshot",
    "RebalanceReport",
    "Rounding",
    "StrategyRecord",
]
