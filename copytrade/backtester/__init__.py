"""Backtesting module."""

from copytrade.backtester.data import filter_by_date, load_trades_csv
from copytrade.backtester.metrics import (
    BacktestReport,
    RunningMetrics,
    compute_report,
)
from copytrade.backtester.replay_engine import BacktestResult, ReplayEngine, run_backtest
from copytrade.backtester.simulator import FillSimulator, clamp_price
from copytrade.backtester.slippage import (
    ImpactModel,
    LinearImpact,
    MarketImpactModel,
    PercentageImpact,
    create_impact_model,
)

__all__ = [
    # Data
    "filter_by_date",
    "load_trades_csv",
    # Impact models
    "ImpactModel",
    "LinearImpact",
    "MarketImpactModel",
    "PercentageImpact",
    "create_impact_model",
    # Simulation
    "FillSimulator",
    "clamp_price",
    # Metrics
    "BacktestReport",
    "RunningMetrics",
    "compute_report",
    # Replay
    "BacktestResult",
    "ReplayEngine",
    "run_backtest",
]
