"""Pre-sizing filters deciding whether an observed trade is worth copying."""

from __future__ import annotations

from collections.abc import Iterable

from copytrade.config.settings import ExecutionConfig
from copytrade.models import TradeEvent


class TradeFilter:
    """Reject observed trades outside the configured size band or market set."""

    def __init__(
        self,
        min_size: float,
        max_size: float,
        allowed_markets: Iterable[str] | None = None,
        min_trader_win_rate: float | None = None,
    ) -> None:
        self.min_size = min_size
        self.max_size = max_size
        self.allowed_markets = set(allowed_markets) if allowed_markets is not None else None
        self.min_trader_win_rate = min_trader_win_rate

    @classmethod
    def from_config(cls, config: ExecutionConfig) -> TradeFilter:
        return cls(
            min_size=config.min_trade_size,
            max_size=config.max_trade_size,
            allowed_markets=config.allowed_markets,
            min_trader_win_rate=config.min_trader_win_rate,
        )

    def rejection_reason(self, trade: TradeEvent) -> str | None:
        """Return why ``trade`` should not be copied, or None to copy it."""
        if trade.size < self.min_size:
            return "SIZE_BELOW_FILTER"
        if trade.size > self.max_size:
            return "SIZE_ABOVE_FILTER"
        if self.allowed_markets is not None and trade.market_id not in self.allowed_markets:
            return "MARKET_NOT_ALLOWED"
        if self.min_trader_win_rate is not None:
            # No track record counts as failing the filter
            if trade.trader_win_rate is None or trade.trader_win_rate < self.min_trader_win_rate:
                return "TRADER_WIN_RATE_TOO_LOW"
        return None

    def should_copy(self, trade: TradeEvent) -> bool:
        return self.rejection_reason(trade) is None
