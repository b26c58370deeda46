"""Tests for the position ledger."""

import threading

import pytest

from copytrade.errors import InsufficientBalance, NoSuchPosition, PositionAlreadyOpen
from copytrade.ledger.ledger import Ledger
from copytrade.models import Fill


def _fill(market_id: str = "m1", side: str = "BUY", size: float = 100.0, price: float = 0.5, fee: float = 0.0) -> Fill:
    cost = size * price
    return Fill(
        market_id=market_id,
        side=side,
        size=size,
        executed_price=price,
        reference_price=price,
        fee=fee,
        cost=cost,
    )


class TestOpenClose:
    def test_buy_debits_total_cost(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill(fee=1.0))
        assert ledger.balance == pytest.approx(1000.0 - 50.0 - 1.0)
        assert ledger.has_position("m1")

    def test_sell_credits_proceeds(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill(side="SELL", fee=1.0))
        assert ledger.balance == pytest.approx(1000.0 + 50.0 - 1.0)

    def test_second_open_same_market_rejected(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill())
        with pytest.raises(PositionAlreadyOpen):
            ledger.open(_fill())
        assert len(ledger.open_positions) == 1

    def test_insufficient_balance_leaves_state_untouched(self) -> None:
        ledger = Ledger(10.0)
        with pytest.raises(InsufficientBalance):
            ledger.open(_fill(size=100.0, price=0.5))
        assert ledger.balance == 10.0
        assert not ledger.has_position("m1")

    def test_close_long_pnl(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill(size=100.0, price=0.4))
        closed = ledger.close("m1", 0.6)
        assert closed.pnl == pytest.approx(20.0)
        assert ledger.balance == pytest.approx(1000.0 - 40.0 + 60.0)
        assert not ledger.has_position("m1")

    def test_close_short_pnl(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill(side="SELL", size=100.0, price=0.6))
        closed = ledger.close("m1", 0.4)
        assert closed.pnl == pytest.approx(20.0)
        assert ledger.balance == pytest.approx(1000.0 + 60.0 - 40.0)

    def test_close_at_entry_is_flat(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill(size=250.0, price=0.37))
        closed = ledger.close("m1", 0.37)
        assert closed.pnl == 0.0
        assert ledger.balance == pytest.approx(1000.0)

    def test_exit_fee(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill(size=100.0, price=0.5, fee=0.5))
        closed = ledger.close("m1", 0.5, fee_rate=0.01)
        assert closed.exit_fee == pytest.approx(0.5)
        assert closed.pnl == 0.0
        assert closed.net_pnl == pytest.approx(-1.0)
        assert ledger.balance == pytest.approx(999.0)

    def test_close_unknown_market(self) -> None:
        with pytest.raises(NoSuchPosition):
            Ledger(100.0).close("nope", 0.5)

    def test_closed_history_in_closing_order(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill("a"))
        ledger.open(_fill("b"))
        ledger.close("b", 0.6)
        ledger.close("a", 0.4)
        assert [c.position.market_id for c in ledger.closed_positions] == ["b", "a"]

    def test_partial_close_keeps_remainder_open(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill(size=100.0, price=0.5, fee=1.0))
        closed = ledger.close("m1", 0.6, size=40.0)

        assert closed.position.size == pytest.approx(40.0)
        assert closed.position.entry_fee == pytest.approx(0.4)
        assert closed.pnl == pytest.approx(4.0)
        assert ledger.balance == pytest.approx(1000.0 - 51.0 + 24.0)
        remainder = ledger.get_position("m1")
        assert remainder is not None
        assert remainder.size == pytest.approx(60.0)
        assert remainder.entry_fee == pytest.approx(0.6)
        assert remainder.entry_price == pytest.approx(0.5)

    def test_partial_close_of_full_size_closes_position(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill(size=100.0))
        ledger.close("m1", 0.5, size=100.0)
        assert not ledger.has_position("m1")

    def test_non_positive_close_size_rejected(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill())
        with pytest.raises(ValueError):
            ledger.close("m1", 0.5, size=0.0)
        assert ledger.has_position("m1")

    def test_unenforced_open_books_overdraft(self) -> None:
        ledger = Ledger(10.0)
        ledger.reserve("m1", 7.5)
        ledger.open(_fill(size=15.0, price=0.9), enforce_balance=False)
        assert ledger.balance == pytest.approx(10.0 - 13.5)
        assert ledger.reserved == 0.0
        assert ledger.has_position("m1")


class TestCloseAll:
    def test_marks_to_market_and_drains(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill("a", size=100.0, price=0.5))
        ledger.open(_fill("b", side="SELL", size=100.0, price=0.5))
        closed = ledger.close_all({"a": 0.7, "b": 0.7})
        assert [c.position.market_id for c in closed] == ["a", "b"]
        assert closed[0].pnl == pytest.approx(20.0)
        assert closed[1].pnl == pytest.approx(-20.0)
        assert ledger.open_positions == {}
        assert ledger.balance == pytest.approx(1000.0)

    def test_missing_price_falls_back_to_entry(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill("a", price=0.3))
        closed = ledger.close_all(lambda market_id: None)
        assert closed[0].exit_price == 0.3
        assert closed[0].pnl == 0.0

    def test_total_value(self) -> None:
        ledger = Ledger(1000.0)
        ledger.open(_fill("a", size=100.0, price=0.5))
        assert ledger.total_value({"a": 0.8}) == pytest.approx(950.0 + 80.0)


class TestReservations:
    def test_reserve_reduces_available_balance(self) -> None:
        ledger = Ledger(100.0)
        ledger.reserve("m1", 40.0)
        assert ledger.available_balance == pytest.approx(60.0)
        assert ledger.balance == 100.0
        assert ledger.snapshot().available_balance == pytest.approx(60.0)

    def test_over_reservation_rejected(self) -> None:
        ledger = Ledger(100.0)
        ledger.reserve("m1", 70.0)
        with pytest.raises(InsufficientBalance):
            ledger.reserve("m2", 40.0)
        assert ledger.reserved == pytest.approx(70.0)

    def test_one_reservation_per_market(self) -> None:
        ledger = Ledger(100.0)
        ledger.reserve("m1", 10.0)
        with pytest.raises(PositionAlreadyOpen):
            ledger.reserve("m1", 10.0)

    def test_open_consumes_own_reservation(self) -> None:
        ledger = Ledger(100.0)
        ledger.reserve("m1", 50.0)
        ledger.reserve("m2", 50.0)
        ledger.open(_fill("m1", size=100.0, price=0.5))
        assert ledger.reserved == pytest.approx(50.0)
        assert ledger.balance == pytest.approx(50.0)

    def test_open_cannot_spend_other_markets_reservation(self) -> None:
        ledger = Ledger(100.0)
        ledger.reserve("m2", 80.0)
        with pytest.raises(InsufficientBalance):
            ledger.open(_fill("m1", size=100.0, price=0.5))

    def test_release(self) -> None:
        ledger = Ledger(100.0)
        ledger.reserve("m1", 30.0)
        assert ledger.release("m1") == 30.0
        assert ledger.release("m1") == 0.0
        assert ledger.available_balance == 100.0

    def test_concurrent_reservations_never_overspend(self) -> None:
        ledger = Ledger(1000.0)
        accepted: list[str] = []
        lock = threading.Lock()

        def worker(i: int) -> None:
            market_id = f"m{i}"
            try:
                ledger.reserve(market_id, 150.0)
            except InsufficientBalance:
                return
            with lock:
                accepted.append(market_id)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(accepted) == 6
        assert ledger.available_balance >= 0
