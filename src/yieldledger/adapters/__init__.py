"""Strategy adapter implementations."""

from .base import StrategyAdapter
from .remote import RemoteStrategyAdapter
from .simulated import SimulatedAdapter

__all__ = ["StrategyAdapter", "RemoteStrategyAdapter", "SimulatedAdapter"]
