"""Concise human-readable ledger logger."""

from __future__ import annotations

import logging

from yieldledger.domain.models import PoolSnapshot


class LedgerLogger:
    """Console logger with fixed line types."""

    def __init__(self, level: str = "INFO") -> None:
        self._logger = logging.getLogger("yieldledger")
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._logger.propagate = False
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s | %(message)s", "%Y-%m-%d %H:%M:%S")
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

    def run_started(self, run_id: str, controller: str) -> None:
        self._logger.info("run | %s | controller %s", self._short_id(run_id), controller)

    def deposit(
        self,
        asset_id: int,
        holder: str,
        amount: int,
        shares: int,
        adapter_id: str | None,
    ) -> None:
        route = adapter_id or "idle"
        self._logger.info(
            "deposit | asset %s | %s | amount %s | shares %s | route %s",
            asset_id,
            holder,
            self._format_amount(amount),
            self._format_amount(shares),
            route,
        )

    def withdraw(
        self,
        asset_id: int,
        holder: str,
        shares: int,
        assets: int,
        pulled: int,
    ) -> None:
        parts = [
            f"withdraw | asset {asset_id} | {holder} | shares {self._format_amount(shares)} "
            f"| assets {self._format_amount(assets)}"
        ]
        if pulled:
            parts.append(f"pulled {self._format_amount(pulled)}")
        self._logger.info(" | ".join(parts))

    def harvest(self, asset_id: int, previous_principal: int, live_assets: int) -> None:
        self._logger.info(
            "harvest | asset %s | principal %s -> %s | yield %s",
            asset_id,
            self._format_amount(previous_principal),
            self._format_amount(live_assets),
            self._format_amount(live_assets - previous_principal, signed=True),
        )

    def rebalance(
        self,
        asset_id: int,
        from_adapter: str,
        to_adapter: str,
        requested: int,
        moved: int,
    ) -> None:
        parts = [
            f"rebalance | asset {asset_id} | {from_adapter} -> {to_adapter} "
            f"| moved {self._format_amount(moved)}"
        ]
        if moved != requested:
            parts.append(f"requested {self._format_amount(requested)}")
        self._logger.info(" | ".join(parts))

    def registry(self, action: str, asset_id: int, detail: str) -> None:
        self._logger.info("registry | %s | asset %s | %s", action, asset_id, detail)

    def pool(self, snapshot: PoolSnapshot, live_assets: int | None = None) -> None:
        active = "none" if snapshot.active_index is None else str(snapshot.active_index)
        live = "n/a" if live_assets is None else self._format_amount(live_assets)
        self._logger.info(
            "pool | asset %s | %s | principal %s | live %s | shares %s | strategies %s | active %s",
            snapshot.asset_id,
            snapshot.token,
            self._format_amount(snapshot.principal),
            live,
            self._format_amount(snapshot.share_supply),
            len(snapshot.strategies),
            active,
        )

    def balance(self, holder: str, asset_id: int, shares: int) -> None:
        self._logger.info(
            "balance | %s | asset %s | shares %s", holder, asset_id, self._format_amount(shares)
        )

    def error(self, message: str) -> None:
        self._logger.error("error | %s", message)

    @staticmethod
    def _short_id(value: str | None, head: int = 10, tail: int = 6) -> str:
        if not value:
            return ""
        text = str(value)
        if len(text) <= head + tail + 1:
            return text
        return f"{text[:head]}...{text[-tail:]}"

    @staticmethod
    def _format_amount(value: int, signed: bool = False) -> str:
        return f"{value:+,}" if signed else f"{value:,}"
