"""Structured ledger event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class LedgerEvent:
    """Single event written to JSONL."""

    run_id: str
    event_type: str
    asset_id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=lambda: datetime.now(tz=UTC).isoformat())

    def to_record(self) -> dict[str, Any]:
        """Convert event to serializable dict."""
        return {
            "ts": self.ts,
            "run_id": self.run_id,
            "event_type": self.event_type,
            "asset_id": self.asset_id,
            "payload": self.payload,
        }
