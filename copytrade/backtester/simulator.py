"""Fill simulation against a price-impact model.

The simulator is pure: it turns an intended size and a reference price into
a Fill and never touches balances or positions. The Ledger applies the
result. Live trading uses the same simulator as the oracle a real fill is
compared against.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from copytrade.backtester.slippage import ImpactModel
from copytrade.errors import InsufficientBalance, InvalidModelParameter, PriceOutOfBounds
from copytrade.models import Fill, Side

MIN_SHARE_PRICE = 0.0
MAX_SHARE_PRICE = 1.0

log = structlog.get_logger(__name__)


def clamp_price(price: float) -> float:
    """Clamp a price to the binary-share domain [0, 1]."""
    return max(MIN_SHARE_PRICE, min(MAX_SHARE_PRICE, price))


class FillSimulator:
    """Simulates fills with slippage and fees.

    Attributes:
        model: Price-impact model used for every fill
        fee_rate: Fee as decimal fraction of cost (0.001 = 10 bps)
    """

    def __init__(self, model: ImpactModel, fee_rate: float = 0.0) -> None:
        if fee_rate < 0:
            raise InvalidModelParameter(f"fee_rate must be >= 0, got {fee_rate}")
        self.model = model
        self.fee_rate = fee_rate

    def expected_price(self, side: Side, size: float, reference_price: float) -> float:
        """Model execution price after the [0, 1] policy clamp."""
        if not MIN_SHARE_PRICE < reference_price < MAX_SHARE_PRICE:
            raise PriceOutOfBounds(f"reference_price must be in (0, 1), got {reference_price}")
        raw = self.model.execution_price(side, size, reference_price)
        price = clamp_price(raw)
        if price != raw:
            log.debug(
                "execution_price_clamped",
                side=side,
                size=size,
                reference_price=reference_price,
                raw_price=raw,
                clamped_price=price,
            )
        return price

    def execute(
        self,
        side: Side,
        size: float,
        reference_price: float,
        market_id: str = "",
        available_balance: float | None = None,
        at: datetime | None = None,
        trade_id: str | None = None,
    ) -> Fill:
        """Simulate a fill.

        Args:
            side: BUY or SELL
            size: Order size
            reference_price: Quoted price in (0, 1)
            market_id: Market the fill belongs to
            available_balance: If given, buys costing more are rejected
            at: Simulated fill time
            trade_id: Id of the observed trade being copied

        Raises:
            PriceOutOfBounds: reference price outside (0, 1)
            InvalidSize: size rejected by the impact model
            InsufficientBalance: buy total cost exceeds available_balance
        """
        executed_price = self.expected_price(side, size, reference_price)
        cost = size * executed_price
        fee = cost * self.fee_rate

        if side == "BUY" and available_balance is not None and cost + fee > available_balance:
            raise InsufficientBalance(required=cost + fee, available=available_balance)

        return Fill(
            market_id=market_id,
            side=side,
            size=size,
            executed_price=executed_price,
            reference_price=reference_price,
            fee=fee,
            cost=cost,
            at=at,
            trade_id=trade_id,
        )
