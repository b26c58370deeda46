"""Risk management module."""

from copytrade.risk.filters import TradeFilter
from copytrade.risk.sizing import PositionSizer

__all__ = ["PositionSizer", "TradeFilter"]
