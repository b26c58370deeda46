"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal


Side = Literal["BUY", "SELL"]
OrderType = Literal["FOK", "GTC", "GTD"]
OrderStatus = Literal["OPEN", "FILLED", "PARTIALLY_FILLED", "CANCELLED"]


def opposite_side(side: Side) -> Side:
    return "SELL" if side == "BUY" else "BUY"


@dataclass(frozen=True)
class TradeEvent:
    """A trade observed from a tracked participant."""

    id: str
    market_id: str
    side: Side
    reference_price: float
    size: float  # quote-currency units
    observed_at: datetime
    trader: str | None = None
    trader_win_rate: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "market_id": self.market_id,
            "side": self.side,
            "reference_price": self.reference_price,
            "size": self.size,
            "observed_at": self.observed_at.isoformat(),
            "trader": self.trader,
        }


@dataclass(frozen=True)
class IntendedTrade:
    """A copied trade after sizing, before execution."""

    market_id: str
    side: Side
    size: float
    reference_price: float
    trade_id: str | None = None


@dataclass(frozen=True)
class Fill:
    """A realized (or simulated) execution.

    Attributes:
        cost: size * executed_price
        fee: cost * fee_rate
    """

    market_id: str
    side: Side
    size: float
    executed_price: float
    reference_price: float
    fee: float
    cost: float
    at: datetime | None = None
    trade_id: str | None = None
    is_partial: bool = False

    @property
    def slippage(self) -> float:
        return self.executed_price - self.reference_price

    @property
    def total_cost(self) -> float:
        return self.cost + self.fee

    @property
    def balance_delta(self) -> float:
        """Cash change when this fill opens a position."""
        if self.side == "BUY":
            return -(self.cost + self.fee)
        return self.cost - self.fee

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "side": self.side,
            "size": self.size,
            "executed_price": self.executed_price,
            "reference_price": self.reference_price,
            "slippage": self.slippage,
            "fee": self.fee,
            "cost": self.cost,
            "at": self.at.isoformat() if self.at else None,
            "trade_id": self.trade_id,
            "is_partial": self.is_partial,
        }


@dataclass(frozen=True)
class Position:
    market_id: str
    side: Side
    entry_price: float
    size: float
    opened_at: datetime | None = None
    entry_fee: float = 0.0
    trade_id: str | None = None


@dataclass(frozen=True)
class ClosedPosition:
    position: Position
    exit_price: float
    pnl: float
    closed_at: datetime | None = None
    exit_fee: float = 0.0

    @property
    def net_pnl(self) -> float:
        return self.pnl - self.position.entry_fee - self.exit_fee

    @property
    def fees(self) -> float:
        return self.position.entry_fee + self.exit_fee

    def to_dict(self) -> dict[str, Any]:
        position = self.position
        return {
            "market_id": position.market_id,
            "side": position.side,
            "size": position.size,
            "entry_price": position.entry_price,
            "exit_price": self.exit_price,
            "pnl": self.pnl,
            "net_pnl": self.net_pnl,
            "fees": self.fees,
            "opened_at": position.opened_at.isoformat() if position.opened_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "trade_id": position.trade_id,
        }


def position_pnl(position: Position, exit_price: float) -> float:
    """Gross P&L of closing ``position`` at ``exit_price``."""
    pnl = (exit_price - position.entry_price) * position.size
    if position.side == "SELL":
        pnl = -pnl
    return pnl


@dataclass(frozen=True)
class OrderIntent:
    market_id: str
    side: Side
    size: float
    limit_price: float
    client_order_id: str
    trade_id: str | None = None
    order_type: OrderType = "FOK"
    # Venue-side expiry, GTD orders only
    expires_at: datetime | None = None


@dataclass(frozen=True)
class OrderStatusReport:
    """Venue answer to an order status poll."""

    order_id: str
    status: OrderStatus
    filled_size: float = 0.0
    avg_price: float | None = None
