"""Strategy adapter contract definitions."""

from __future__ import annotations

from typing import Protocol

from yieldledger.domain.models import AdapterKind


class StrategyAdapter(Protocol):
    """Interface for yield backends the ledger routes pooled capital to.

    ``account`` is the identity the adapter uses to pull tokens from the
    ledger; the ledger grants it a standing allowance when the adapter is
    registered.
    """

    adapter_id: str
    kind: AdapterKind
    account: str

    def deposit(self, amount: int) -> None:
        """Pull ``amount`` from the ledger and put it to work."""

    def withdraw(self, amount: int) -> int:
        """Return up to ``amount`` to the ledger and report what was returned."""

    def total_assets(self) -> int:
        """Return the asset amount currently managed for the ledger."""
