"""Position sizing utilities."""

from __future__ import annotations

from copytrade.config.settings import SizingConfig
from copytrade.errors import BelowMinimum
from copytrade.models import IntendedTrade, TradeEvent


class PositionSizer:
    """Caps a copied trade's size by absolute and capital-relative limits.

    Strategies:
        absolute: min(target, abs_cap)
        relative: min(target, capital * rel_fraction)
        hybrid:   both caps, with the ``priority`` cap applied last
    """

    def __init__(self, config: SizingConfig) -> None:
        self.config = config

    def size(self, target_size: float, capital: float) -> float:
        """Return the size to execute for a trade of ``target_size``.

        Raises:
            BelowMinimum: If the capped size is non-positive or below
                ``min_position_size``.
        """
        cfg = self.config
        size = target_size
        relative_cap = max(capital, 0.0) * cfg.max_position_size_relative

        if cfg.strategy == "absolute":
            size = min(size, cfg.max_position_size_absolute)
        elif cfg.strategy == "relative":
            size = min(size, relative_cap)
        elif cfg.priority == "absolute":
            size = min(size, relative_cap)
            size = min(size, cfg.max_position_size_absolute)
        else:
            size = min(size, cfg.max_position_size_absolute)
            size = min(size, relative_cap)

        if size <= 0 or size < cfg.min_position_size:
            raise BelowMinimum(size, cfg.min_position_size)
        return size

    def intend(self, trade: TradeEvent, capital: float) -> IntendedTrade:
        """Size an observed trade into the trade to copy."""
        return IntendedTrade(
            market_id=trade.market_id,
            side=trade.side,
            size=self.size(trade.size, capital),
            reference_price=trade.reference_price,
            trade_id=trade.id,
        )

    @staticmethod
    def is_size_acceptable(size: float, min_size: float, max_size: float) -> bool:
        return min_size <= size <= max_size
