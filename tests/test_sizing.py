import pytest

from copytrade.config.settings import SizingConfig
from copytrade.errors import BelowMinimum
from copytrade.risk.sizing import PositionSizer


def _sizer(**overrides) -> PositionSizer:
    return PositionSizer(SizingConfig(**overrides))


def test_relative_strategy_caps_at_capital_fraction() -> None:
    sizer = _sizer(strategy="relative", max_position_size_relative=0.1)
    assert sizer.size(2000.0, 10_000.0) == pytest.approx(1000.0)


def test_hybrid_absolute_priority_wins() -> None:
    sizer = _sizer(
        strategy="hybrid",
        max_position_size_absolute=1000.0,
        max_position_size_relative=0.2,
        priority="absolute",
    )
    # relative allowance is 2000, absolute cap overrides it
    assert sizer.size(5000.0, 10_000.0) == pytest.approx(1000.0)


def test_hybrid_relative_priority_is_symmetric() -> None:
    sizer = _sizer(
        strategy="hybrid",
        max_position_size_absolute=1000.0,
        max_position_size_relative=0.05,
        priority="relative",
    )
    assert sizer.size(5000.0, 10_000.0) == pytest.approx(500.0)


def test_absolute_strategy_ignores_capital() -> None:
    sizer = _sizer(strategy="absolute", max_position_size_absolute=250.0)
    assert sizer.size(1000.0, 0.0) == pytest.approx(250.0)
    assert sizer.size(100.0, 0.0) == pytest.approx(100.0)


def test_target_below_caps_passes_through() -> None:
    sizer = _sizer(strategy="hybrid")
    assert sizer.size(42.0, 10_000.0) == pytest.approx(42.0)


@pytest.mark.parametrize("strategy", ["relative", "hybrid"])
@pytest.mark.parametrize("capital", [0.0, -500.0])
def test_non_positive_capital_is_below_minimum(strategy: str, capital: float) -> None:
    sizer = _sizer(strategy=strategy)
    with pytest.raises(BelowMinimum):
        sizer.size(100.0, capital)


def test_dust_size_rejected() -> None:
    sizer = _sizer(strategy="absolute", min_position_size=5.0)
    with pytest.raises(BelowMinimum) as exc_info:
        sizer.size(4.99, 10_000.0)
    assert exc_info.value.minimum == 5.0


def test_sizer_is_pure() -> None:
    sizer = _sizer(strategy="hybrid")
    first = sizer.size(3000.0, 7_500.0)
    second = sizer.size(3000.0, 7_500.0)
    assert first == second == pytest.approx(750.0)


def test_size_never_exceeds_target_or_caps() -> None:
    sizer = _sizer(
        strategy="hybrid",
        max_position_size_absolute=800.0,
        max_position_size_relative=0.1,
    )
    for target in (10.0, 500.0, 900.0, 5000.0):
        for capital in (1_000.0, 9_000.0, 20_000.0):
            size = sizer.size(target, capital)
            assert size <= target
            assert size <= 800.0
            assert size <= capital * 0.1 + 1e-9


def test_is_size_acceptable() -> None:
    assert PositionSizer.is_size_acceptable(10.0, 5.0, 50.0)
    assert not PositionSizer.is_size_acceptable(4.0, 5.0, 50.0)
    assert not PositionSizer.is_size_acceptable(51.0, 5.0, 50.0)


def test_intend_carries_trade_identity(make_trade) -> None:
    sizer = _sizer(strategy="absolute", max_position_size_absolute=250.0)
    trade = make_trade(market_id="m9", side="SELL", reference_price=0.37, size=1000.0)

    intended = sizer.intend(trade, 10_000.0)

    assert intended.size == pytest.approx(250.0)
    assert (intended.market_id, intended.side, intended.reference_price) == ("m9", "SELL", 0.37)
    assert intended.trade_id == trade.id
