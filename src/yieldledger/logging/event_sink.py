"""Event sinks and per-run Plotly report generator."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import pandas as pd
import plotly.express as px

from yieldledger.domain.events import LedgerEvent

POOL_STATE_EVENTS = {"deposit_routed", "withdrawn", "harvested", "rebalanced"}


class EventSink(Protocol):
    """Destination for ledger events."""

    def emit(self, event: LedgerEvent) -> None:
        """Record one event."""


class NullEventSink:
    """Sink that drops every event."""

    def emit(self, event: LedgerEvent) -> None:
        _ = event


class MemoryEventSink:
    """In-process sink that keeps events in order."""

    def __init__(self) -> None:
        self.events: list[LedgerEvent] = []

    def emit(self, event: LedgerEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[LedgerEvent]:
        return [event for event in self.events if event.event_type == event_type]


class JsonlEventSink:
    """Append-only JSONL writer."""

    def __init__(self, path: str) -> None:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.path = output_path

    def emit(self, event: LedgerEvent) -> None:
        record = event.to_record()
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, sort_keys=True, default=str))
            handle.write("\n")


def load_events(path: str | Path) -> list[dict[str, Any]]:
    """Load JSONL records from disk."""
    records: list[dict[str, Any]] = []
    input_path = Path(path)
    if not input_path.exists():
        return records
    with input_path.open("r", encoding="utf-8") as handle:
        for line in handle:
            text = line.strip()
            if not text:
                continue
            records.append(json.loads(text))
    return records


def pool_state_frame(events: list[dict[str, Any]]) -> pd.DataFrame:
    """Principal and share supply per asset after every accounting event."""
    rows: list[dict[str, Any]] = []
    for event in events:
        if event.get("event_type") not in POOL_STATE_EVENTS:
            continue
        payload = event.get("payload", {})
        if "principal" not in payload:
            continue
        rows.append(
            {
                "ts": event.get("ts"),
                "asset_id": str(event.get("asset_id")),
                "event_type": event.get("event_type"),
                "principal": float(payload["principal"]),
                "share_supply": float(payload.get("share_supply", 0)),
            }
        )
    frame = pd.DataFrame(
        rows, columns=["ts", "asset_id", "event_type", "principal", "share_supply"]
    )
    frame["ts"] = pd.to_datetime(frame["ts"], utc=True, errors="coerce")
    return frame


def generate_plotly_report(events_jsonl_path: str, output_html_path: str) -> None:
    """Render an interactive event timeline and pool accounting report."""
    events = load_events(events_jsonl_path)
    output = Path(output_html_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    if not events:
        empty_df = pd.DataFrame(
            {
                "ts": ["no-events"],
                "event_type": ["none"],
                "count": [0],
            }
        )
        figure = px.bar(empty_df, x="event_type", y="count", title="Run Event Summary")
        figure.write_html(str(output), include_plotlyjs="cdn")
        return

    rows: list[dict[str, Any]] = []
    for event in events:
        rows.append(
            {
                "ts": event.get("ts"),
                "event_type": event.get("event_type"),
                "asset_id": str(event.get("asset_id")),
            }
        )

    frame = pd.DataFrame(rows)
    frame["ts"] = pd.to_datetime(frame["ts"], utc=True, errors="coerce")
    summary = frame.groupby("event_type", dropna=False).size().reset_index(name="count")
    timeline = px.scatter(
        frame,
        x="ts",
        y="event_type",
        color="asset_id",
        title="Ledger Events Timeline",
    )
    bars = px.bar(summary, x="event_type", y="count", title="Ledger Event Counts")
    html_parts = [
        "<html><head><meta charset='utf-8'><title>yieldledger run report</title></head><body>",
        timeline.to_html(full_html=False, include_plotlyjs="cdn"),
        bars.to_html(full_html=False, include_plotlyjs=False),
    ]
    pool_frame = pool_state_frame(events)
    if not pool_frame.empty:
        principal = px.line(
            pool_frame,
            x="ts",
            y="principal",
            color="asset_id",
            markers=True,
            title="Pool Principal",
        )
        supply = px.line(
            pool_frame,
            x="ts",
            y="share_supply",
            color="asset_id",
            markers=True,
            title="Pool Share Supply",
        )
        html_parts.append(principal.to_html(full_html=False, include_plotlyjs=False))
        html_parts.append(supply.to_html(full_html=False, include_plotlyjs=False))
    html_parts.append("</body></html>")
    output.write_text("".join(html_parts), encoding="utf-8")
