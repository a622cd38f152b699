"""Fungible token custody primitives used by the ledger and adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from yieldledger.errors import TokenError, ZeroAddress

MAX_ALLOWANCE = 2**256 - 1


class Token(Protocol):
    """Balance and transfer surface of an underlying asset."""

    symbol: str

    def balance_of(self, account: str) -> int:
        """Return the balance held by ``account``."""

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move ``amount`` from ``sender`` to ``recipient``."""

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        """Move ``amount`` out of ``owner`` using ``spender``'s allowance."""

    def approve(self, owner: str, spender: str, amount: int) -> None:
        """Set ``spender``'s allowance over ``owner``'s balance."""

    def allowance(self, owner: str, spender: str) -> int:
        """Return the remaining allowance."""


@dataclass
class InMemoryToken:
    """Deterministic in-memory token with ERC-20 style allowances."""

    symbol: str
    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[tuple[str, str], int] = field(default_factory=dict)

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def total_supply(self) -> int:
        return sum(self.balances.values())

    def mint(self, account: str, amount: int) -> None:
        self._require_account(account)
        self._require_amount(amount)
        self.balances[account] = self.balance_of(account) + amount

    def burn(self, account: str, amount: int) -> None:
        self._require_amount(amount)
        self._debit(account, amount)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self._require_account(recipient)
        self._require_amount(amount)
        self._debit(sender, amount)
        self.balances[recipient] = self.balance_of(recipient) + amount

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        current = self.allowance(owner, spender)
        if spender != owner and current < amount:
            raise TokenError(
                f"{self.symbol}: allowance {current} of {spender} over {owner} "
                f"is below {amount}"
            )
        self.transfer(owner, recipient, amount)
        if spender != owner and current != MAX_ALLOWANCE:
            self.allowances[(owner, spender)] = current - amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        self._require_account(owner)
        self._require_account(spender)
        self._require_amount(amount)
        if amount == 0:
            self.allowances.pop((owner, spender), None)
            return
        self.allowances[(owner, spender)] = amount

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def _debit(self, account: str, amount: int) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise TokenError(f"{self.symbol}: balance {balance} of {account} is below {amount}")
        remaining = balance - amount
        if remaining == 0:
            self.balances.pop(account, None)
        else:
            self.balances[account] = remaining

    @staticmethod
    def _require_account(account: str) -> None:
        if not account or not str(account).strip():
            raise ZeroAddress("account identity must be non-empty")

    @staticmethod
    def _require_amount(amount: int) -> None:
        if amount < 0:
            raise TokenError("amount must be non-negative")
