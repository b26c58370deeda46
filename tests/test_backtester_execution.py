"""Tests for price-impact models and the fill simulator."""

import math

import pytest

from copytrade.backtester.simulator import FillSimulator, clamp_price
from copytrade.backtester.slippage import (
    LinearImpact,
    MarketImpactModel,
    PercentageImpact,
    create_impact_model,
)
from copytrade.config.settings import SlippageConfig
from copytrade.errors import (
    InsufficientBalance,
    InvalidModelParameter,
    InvalidSize,
    PriceOutOfBounds,
)


class TestImpactModels:
    """Tests for the raw impact formulas."""

    def test_linear_buy_pays_size_over_depth(self) -> None:
        model = LinearImpact(depth_coefficient=100_000.0)
        assert model.execution_price("BUY", 100.0, 0.5) == pytest.approx(0.501)

    def test_linear_sell_receives_less(self) -> None:
        model = LinearImpact(depth_coefficient=100_000.0)
        assert model.execution_price("SELL", 100.0, 0.5) == pytest.approx(0.499)

    @pytest.mark.parametrize("depth", [0.0, -1.0])
    def test_linear_rejects_non_positive_depth(self, depth: float) -> None:
        with pytest.raises(InvalidModelParameter):
            LinearImpact(depth_coefficient=depth)

    def test_percentage(self) -> None:
        model = PercentageImpact(rate=0.01)
        assert model.execution_price("BUY", 50.0, 0.4) == pytest.approx(0.404)
        assert model.execution_price("SELL", 50.0, 0.4) == pytest.approx(0.396)

    def test_market_impact_uses_log_of_size(self) -> None:
        model = MarketImpactModel(impact_param=0.001)
        expected = 0.5 + 0.001 * math.log(1000.0)
        assert model.execution_price("BUY", 1000.0, 0.5) == pytest.approx(expected)

    @pytest.mark.parametrize("size", [0.0, -5.0])
    def test_market_impact_rejects_non_positive_size(self, size: float) -> None:
        model = MarketImpactModel(impact_param=0.001)
        with pytest.raises(InvalidSize):
            model.execution_price("BUY", size, 0.5)

    def test_zero_size_has_no_linear_or_percentage_impact(self) -> None:
        assert LinearImpact(100_000.0).execution_price("BUY", 0.0, 0.3) == pytest.approx(0.3)
        assert PercentageImpact(0.01).execution_price("SELL", 0.0, 0.3) == pytest.approx(0.3)

    def test_factory(self) -> None:
        assert isinstance(create_impact_model(SlippageConfig(model="linear")), LinearImpact)
        assert isinstance(
            create_impact_model(SlippageConfig(model="percentage", rate=0.02)), PercentageImpact
        )
        assert isinstance(
            create_impact_model(SlippageConfig(model="market_impact")), MarketImpactModel
        )


class TestFillSimulator:
    """Tests for simulated fills."""

    def test_linear_fill_scenario(self) -> None:
        sim = FillSimulator(LinearImpact(100_000.0))
        fill = sim.execute("BUY", 100.0, 0.5, market_id="m")
        assert fill.executed_price == pytest.approx(0.501)
        assert fill.slippage == pytest.approx(0.001)
        assert fill.cost == pytest.approx(50.1)
        assert fill.fee == 0.0

    def test_slippage_sign_follows_side(self) -> None:
        sim = FillSimulator(LinearImpact(10_000.0))
        for size in (1.0, 50.0, 500.0):
            assert sim.execute("BUY", size, 0.5).slippage >= 0
            assert sim.execute("SELL", size, 0.5).slippage <= 0

    def test_fee_applied_to_cost(self) -> None:
        sim = FillSimulator(PercentageImpact(0.0), fee_rate=0.002)
        fill = sim.execute("BUY", 1000.0, 0.25)
        assert fill.cost == pytest.approx(250.0)
        assert fill.fee == pytest.approx(0.5)
        assert fill.total_cost == pytest.approx(250.5)
        assert fill.balance_delta == pytest.approx(-250.5)

    def test_sell_fill_credits_balance(self) -> None:
        sim = FillSimulator(PercentageImpact(0.0), fee_rate=0.01)
        fill = sim.execute("SELL", 100.0, 0.5)
        assert fill.balance_delta == pytest.approx(50.0 - 0.5)

    def test_price_clamped_to_upper_bound(self) -> None:
        sim = FillSimulator(LinearImpact(100.0))
        fill = sim.execute("BUY", 50.0, 0.9)
        assert fill.executed_price == 1.0

    def test_price_clamped_to_lower_bound(self) -> None:
        sim = FillSimulator(LinearImpact(100.0))
        fill = sim.execute("SELL", 50.0, 0.1)
        assert fill.executed_price == 0.0

    @pytest.mark.parametrize("price", [0.0, 1.0, -0.1, 1.5])
    def test_reference_price_out_of_bounds(self, price: float) -> None:
        sim = FillSimulator(LinearImpact(100_000.0))
        with pytest.raises(PriceOutOfBounds):
            sim.execute("BUY", 10.0, price)

    def test_insufficient_balance_for_buy(self) -> None:
        sim = FillSimulator(PercentageImpact(0.0), fee_rate=0.01)
        with pytest.raises(InsufficientBalance) as exc_info:
            sim.execute("BUY", 200.0, 0.5, available_balance=100.0)
        assert exc_info.value.required == pytest.approx(101.0)
        assert exc_info.value.available == 100.0

    def test_sell_not_limited_by_balance(self) -> None:
        sim = FillSimulator(PercentageImpact(0.0))
        fill = sim.execute("SELL", 200.0, 0.5, available_balance=0.0)
        assert fill.cost == pytest.approx(100.0)

    def test_negative_fee_rate_rejected(self) -> None:
        with pytest.raises(InvalidModelParameter):
            FillSimulator(LinearImpact(1.0), fee_rate=-0.1)

    def test_clamp_price(self) -> None:
        assert clamp_price(-0.2) == 0.0
        assert clamp_price(0.42) == 0.42
        assert clamp_price(1.7) == 1.0
