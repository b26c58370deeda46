"""Price-impact models for simulated fills.

Provides different impact assumptions:
- LinearImpact: price moves by size / depth_coefficient
- PercentageImpact: price moves by a fixed fraction of the quote
- MarketImpactModel: price moves by impact_param * ln(size)

Each model maps (side, size, reference_price) to an unclamped execution
price. Clamping to the [0, 1] share-price domain is the simulator's job.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from copytrade.config.settings import SlippageConfig
from copytrade.errors import InvalidModelParameter, InvalidSize
from copytrade.models import Side


def _signed(side: Side, impact: float) -> float:
    return impact if side == "BUY" else -impact


@dataclass(frozen=True)
class LinearImpact:
    """Linear book-depth model: buys pay size / depth above the quote."""

    depth_coefficient: float

    def __post_init__(self) -> None:
        if not self.depth_coefficient > 0:
            raise InvalidModelParameter(
                f"depth_coefficient must be > 0, got {self.depth_coefficient}"
            )

    def execution_price(self, side: Side, size: float, reference_price: float) -> float:
        if size < 0:
            raise InvalidSize(f"size must be >= 0, got {size}")
        return reference_price + _signed(side, size / self.depth_coefficient)


@dataclass(frozen=True)
class PercentageImpact:
    """Fixed-rate model: buys pay ``rate`` above the quote, sells receive below.

    An empty order (size 0) has no impact.
    """

    rate: float

    def __post_init__(self) -> None:
        if not 0 <= self.rate < 1:
            raise InvalidModelParameter(f"rate must be in [0, 1), got {self.rate}")

    def execution_price(self, side: Side, size: float, reference_price: float) -> float:
        if size < 0:
            raise InvalidSize(f"size must be >= 0, got {size}")
        if size == 0:
            return reference_price
        if side == "BUY":
            return reference_price * (1 + self.rate)
        return reference_price * (1 - self.rate)


@dataclass(frozen=True)
class MarketImpactModel:
    """Logarithmic market-impact model.

    impact = impact_param * ln(size). Sizes below 1 produce a negative
    impact, which the formula keeps as-is.
    """

    impact_param: float

    def __post_init__(self) -> None:
        if self.impact_param < 0 or math.isnan(self.impact_param):
            raise InvalidModelParameter(f"impact_param must be >= 0, got {self.impact_param}")

    def execution_price(self, side: Side, size: float, reference_price: float) -> float:
        if size <= 0:
            raise InvalidSize(f"market impact model requires size > 0, got {size}")
        return reference_price + _signed(side, self.impact_param * math.log(size))


ImpactModel = LinearImpact | PercentageImpact | MarketImpactModel


def create_impact_model(config: SlippageConfig) -> ImpactModel:
    """Factory function for creating impact models from configuration."""
    if config.model == "linear":
        return LinearImpact(depth_coefficient=config.depth_coefficient)
    if config.model == "percentage":
        return PercentageImpact(rate=config.rate)
    if config.model == "market_impact":
        return MarketImpactModel(impact_param=config.impact_param)
    raise InvalidModelParameter(f"Unknown slippage model: {config.model}")
