"""Per-pool strategy registry with an active-adapter selector.

Indices are only valid until the next ``remove``: removal swaps the last
adapter into the freed slot, so callers must not cache indices across
registry mutations.
"""

from __future__ import annotations

from yieldledger.adapters.base import StrategyAdapter
from yieldledger.domain.models import StrategyRecord
from yieldledger.errors import IndexOutOfBounds, ZeroAdapter


class StrategyRegistry:
    """Ordered adapter list plus the index new deposits are routed to."""

    def __init__(self) -> None:
        self._adapters: list[StrategyAdapter] = []
        self._active_index: int | None = None

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def active_index(self) -> int | None:
        return self._active_index

    def add(self, adapter: StrategyAdapter | None) -> int:
        """Append an adapter and return its index."""
        if adapter is None:
            raise ZeroAdapter("adapter reference must not be None")
        self._adapters.append(adapter)
        if self._active_index is None:
            self._active_index = 0
        return len(self._adapters) - 1

    def remove(self, index: int) -> StrategyAdapter:
        """Remove by swap-with-last and return the removed adapter."""
        self._require_index(index)
        last = len(self._adapters) - 1
        removed = self._adapters[index]
        self._adapters[index] = self._adapters[last]
        self._adapters.pop()
        if not self._adapters:
            self._active_index = None
        elif self._active_index is not None and self._active_index >= len(self._adapters):
            self._active_index = 0
        return removed

    def set_active(self, index: int) -> None:
        self._require_index(index)
        self._active_index = index

    def resolve(self, index: int) -> StrategyAdapter | None:
        """Return the adapter at ``index`` or ``None`` when there is none."""
        if 0 <= index < len(self._adapters):
            return self._adapters[index]
        return None

    def resolve_active(self) -> StrategyAdapter | None:
        """Return the active adapter, or ``None`` to operate on idle balance only."""
        if self._active_index is None:
            return None
        return self.resolve(self._active_index)

    def adapters(self) -> tuple[StrategyAdapter, ...]:
        return tuple(self._adapters)

    def records(self) -> tuple[StrategyRecord, ...]:
        return tuple(
            StrategyRecord(
                index=index,
                adapter_id=adapter.adapter_id,
                kind=adapter.kind,
                active=index == self._active_index,
            )
            for index, adapter in enumerate(self._adapters)
        )

    def total_assets(self) -> int:
        """Sum of every registered adapter's reported managed balance."""
        return sum(int(adapter.total_assets()) for adapter in self._adapters)

    def _require_index(self, index: int) -> None:
        if not 0 <= index < len(self._adapters):
            raise IndexOutOfBounds(
                f"strategy index {index} is out of bounds for {len(self._adapters)} adapters"
            )
