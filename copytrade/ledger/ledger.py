"""Position ledger: balance, open positions and closed-position history.

Single position per market. Every mutation happens under one lock and
either fully applies or raises before touching state.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime

import structlog

from copytrade.errors import InsufficientBalance, NoSuchPosition, PositionAlreadyOpen
from copytrade.models import ClosedPosition, Fill, Position, position_pnl

PriceLookup = Callable[[str], float | None]


@dataclass(frozen=True)
class LedgerSnapshot:
    balance: float
    reserved: float
    open_positions: dict[str, Position]
    closed_count: int

    @property
    def available_balance(self) -> float:
        return self.balance - self.reserved


class Ledger:
    """Append-only position store keyed by market.

    Example:
        ledger = Ledger(initial_balance=10_000.0)
        ledger.open(fill)
        closed = ledger.close("market-1", exit_price=0.62)
    """

    def __init__(self, initial_balance: float) -> None:
        self.initial_balance = initial_balance
        self._balance = initial_balance
        self._positions: dict[str, Position] = {}
        self._closed: list[ClosedPosition] = []
        self._reservations: dict[str, float] = {}
        self._lock = threading.RLock()
        self.log = structlog.get_logger(__name__)

    @property
    def balance(self) -> float:
        with self._lock:
            return self._balance

    @property
    def reserved(self) -> float:
        with self._lock:
            return sum(self._reservations.values())

    @property
    def available_balance(self) -> float:
        """Balance not earmarked for in-flight orders."""
        with self._lock:
            return self._balance - sum(self._reservations.values())

    @property
    def closed_positions(self) -> list[ClosedPosition]:
        with self._lock:
            return list(self._closed)

    @property
    def open_positions(self) -> dict[str, Position]:
        with self._lock:
            return dict(self._positions)

    def has_position(self, market_id: str) -> bool:
        with self._lock:
            return market_id in self._positions

    def get_position(self, market_id: str) -> Position | None:
        with self._lock:
            return self._positions.get(market_id)

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                balance=self._balance,
                reserved=sum(self._reservations.values()),
                open_positions=dict(self._positions),
                closed_count=len(self._closed),
            )

    def reserve(self, market_id: str, amount: float) -> None:
        """Earmark ``amount`` of the balance for an in-flight order.

        Raises:
            InsufficientBalance: amount exceeds the unreserved balance
            PositionAlreadyOpen: the market already holds a reservation
        """
        with self._lock:
            if market_id in self._reservations:
                raise PositionAlreadyOpen(market_id)
            available = self._balance - sum(self._reservations.values())
            if amount > available:
                raise InsufficientBalance(required=amount, available=available)
            self._reservations[market_id] = amount

    def release(self, market_id: str) -> float:
        """Drop a reservation and return its amount (0 if none)."""
        with self._lock:
            return self._reservations.pop(market_id, 0.0)

    def open(self, fill: Fill, enforce_balance: bool = True) -> Position:
        """Open a position from a fill, debiting or crediting the balance.

        A reservation held by the fill's market is consumed first. With
        ``enforce_balance`` off the fill is booked even if it overdraws the
        balance; live venue fills use this once they have already happened.

        Raises:
            PositionAlreadyOpen: market already has an open position
            InsufficientBalance: buy total cost exceeds available balance
        """
        with self._lock:
            if fill.market_id in self._positions:
                raise PositionAlreadyOpen(fill.market_id)
            own_reservation = self._reservations.get(fill.market_id, 0.0)
            available = self._balance - sum(self._reservations.values()) + own_reservation
            if enforce_balance and fill.side == "BUY" and fill.total_cost > available:
                raise InsufficientBalance(required=fill.total_cost, available=available)

            position = Position(
                market_id=fill.market_id,
                side=fill.side,
                entry_price=fill.executed_price,
                size=fill.size,
                opened_at=fill.at,
                entry_fee=fill.fee,
                trade_id=fill.trade_id,
            )
            self._reservations.pop(fill.market_id, None)
            self._balance += fill.balance_delta
            self._positions[fill.market_id] = position

        self.log.debug(
            "position_opened",
            market_id=fill.market_id,
            side=fill.side,
            size=fill.size,
            entry_price=fill.executed_price,
        )
        return position

    def close(
        self,
        market_id: str,
        exit_price: float,
        at: datetime | None = None,
        fee_rate: float = 0.0,
        size: float | None = None,
    ) -> ClosedPosition:
        """Close the market's position at ``exit_price``.

        Longs are credited ``size * exit_price`` minus the exit fee; shorts
        pay it back plus the exit fee. With ``size`` below the open size only
        that many shares are closed; the remainder stays open with its share
        of the entry fee.

        Raises:
            NoSuchPosition: nothing is open for ``market_id``
            ValueError: ``size`` is not positive
        """
        if size is not None and size <= 0:
            raise ValueError(f"close size must be positive, got {size}")
        with self._lock:
            position = self._positions.get(market_id)
            if position is None:
                raise NoSuchPosition(market_id)

            remainder: Position | None = None
            if size is not None and size < position.size:
                closed_fee = position.entry_fee * size / position.size
                remainder = replace(
                    position,
                    size=position.size - size,
                    entry_fee=position.entry_fee - closed_fee,
                )
                position = replace(position, size=size, entry_fee=closed_fee)

            exit_value = position.size * exit_price
            exit_fee = exit_value * fee_rate
            if position.side == "BUY":
                self._balance += exit_value - exit_fee
            else:
                self._balance -= exit_value + exit_fee

            closed = ClosedPosition(
                position=position,
                exit_price=exit_price,
                pnl=position_pnl(position, exit_price),
                closed_at=at,
                exit_fee=exit_fee,
            )
            if remainder is None:
                del self._positions[market_id]
            else:
                self._positions[market_id] = remainder
            self._closed.append(closed)

        self.log.debug(
            "position_closed",
            market_id=market_id,
            exit_price=exit_price,
            size=position.size,
            remaining=remainder.size if remainder else 0.0,
            pnl=closed.pnl,
        )
        return closed

    def close_all(
        self,
        price_lookup: PriceLookup | Mapping[str, float],
        at: datetime | None = None,
        fee_rate: float = 0.0,
    ) -> list[ClosedPosition]:
        """Mark every open position to market and drain the open set.

        Markets the lookup has no price for close at their entry price.
        """
        lookup: PriceLookup = (
            price_lookup.get if isinstance(price_lookup, Mapping) else price_lookup
        )
        closed: list[ClosedPosition] = []
        with self._lock:
            for market_id in list(self._positions):
                position = self._positions[market_id]
                exit_price = lookup(market_id)
                if exit_price is None:
                    exit_price = position.entry_price
                closed.append(self.close(market_id, exit_price, at=at, fee_rate=fee_rate))
        return closed

    def total_value(self, price_lookup: PriceLookup | Mapping[str, float]) -> float:
        """Balance plus marked value of open positions."""
        lookup: PriceLookup = (
            price_lookup.get if isinstance(price_lookup, Mapping) else price_lookup
        )
        with self._lock:
            total = self._balance
            for market_id, position in self._positions.items():
                price = lookup(market_id)
                if price is None:
                    price = position.entry_price
                value = position.size * price
                total += value if position.side == "BUY" else -value
            return total
