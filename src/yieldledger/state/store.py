"""State store contract used by the runtime."""

from __future__ import annotations

from typing import Protocol

from yieldledger.domain.models import LedgerSnapshot


class StateStore(Protocol):
    """Persistence API for run metadata and ledger snapshots."""

    def record_run(self, run_id: str, controller: str, scenario: str) -> None:
        """Persist run metadata."""

    def save_snapshot(self, run_id: str, snapshot: LedgerSnapshot) -> None:
        """Replace the stored ledger state with ``snapshot``."""

    def load_snapshot(self) -> LedgerSnapshot | None:
        """Return the stored ledger state, if any."""

    def close(self) -> None:
        """Close persistence resources."""


class NoopStateStore:
    """No-op state store for runs without persistence."""

    def record_run(self, run_id: str, controller: str, scenario: str) -> None:
        _ = (run_id, controller, scenario)

    def save_snapshot(self, run_id: str, snapshot: LedgerSnapshot) -> None:
        _ = (run_id, snapshot)

    def load_snapshot(self) -> LedgerSnapshot | None:
        return None

    def close(self) -> None:
        return None
