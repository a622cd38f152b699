"""Deterministic in-memory strategy adapter for scenarios and tests."""

from __future__ import annotations

from dataclasses import dataclass, field

from yieldledger.domain.models import AdapterKind
from yieldledger.tokens import InMemoryToken

BPS = 10_000


@dataclass
class SimulatedAdapter:
    """Adapter that custodies tokens under its own account.

    ``slippage_bps`` is burned from every withdrawal and ``liquidity_cap``
    bounds how much a single withdrawal can release; both make ``withdraw``
    return less than requested without raising.
    """

    adapter_id: str
    token: InMemoryToken
    ledger_account: str
    kind: AdapterKind = AdapterKind.LENDING
    slippage_bps: int = 0
    liquidity_cap: int | None = None
    account: str = field(init=False)

    def __post_init__(self) -> None:
        if not 0 <= self.slippage_bps <= BPS:
            raise ValueError("slippage_bps must be between 0 and 10000")
        if self.liquidity_cap is not None and self.liquidity_cap < 0:
            raise ValueError("liquidity_cap must be non-negative")
        self.kind = AdapterKind(self.kind)
        self.account = f"adapter:{self.adapter_id}"

    def deposit(self, amount: int) -> None:
        self.token.transfer_from(self.account, self.ledger_account, self.account, amount)

    def withdraw(self, amount: int) -> int:
        available = min(amount, self.total_assets())
        if self.liquidity_cap is not None:
            available = min(available, self.liquidity_cap)
        if available <= 0:
            return 0
        slippage = available * self.slippage_bps // BPS
        returned = available - slippage
        if slippage:
            self.token.burn(self.account, slippage)
        if returned:
            self.token.transfer(self.account, self.ledger_account, returned)
        return returned

    def total_assets(self) -> int:
        return self.token.balance_of(self.account)

    def accrue_yield(self, amount: int) -> None:
        """Credit backend yield to the managed balance."""
        self.token.mint(self.account, amount)

    def realize_loss(self, amount: int) -> int:
        """Remove up to ``amount`` from the managed balance and return the loss taken."""
        loss = min(amount, self.total_assets())
        if loss:
            self.token.burn(self.account, loss)
        return loss
