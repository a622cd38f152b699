"""Logging helpers."""

from .event_sink import (
    EventSink,
    JsonlEventSink,
    MemoryEventSink,
    NullEventSink,
    generate_plotly_report,
)
from .logger import LedgerLogger

__all__ = [
    "EventSink",
    "JsonlEventSink",
    "LedgerLogger",
    "MemoryEventSink",
    "NullEventSink",
    "generate_plotly_report",
]
