"""Startup wiring for replay and live runs."""

from __future__ import annotations

from collections.abc import AsyncIterable
from datetime import datetime, timezone
from pathlib import Path

import structlog

from copytrade.backtester.metrics import BacktestReport
from copytrade.backtester.replay_engine import BacktestResult, run_backtest
from copytrade.config.settings import Settings, load_settings
from copytrade.errors import ConfigError
from copytrade.execution.executor import ExecutionVenue
from copytrade.execution.live_engine import LiveCopyEngine
from copytrade.ledger.journal import TradeJournal
from copytrade.models import TradeEvent
from copytrade.monitoring import bind_run_context, configure_logging

log = structlog.get_logger(__name__)


def bootstrap(config_path: str | Path | None = None) -> Settings:
    """Load settings and configure logging before any trade is processed.

    Raises:
        ConfigError: the configuration is invalid
    """
    settings = load_settings(config_path)
    configure_logging(settings)
    bind_run_context(run_id=datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S"))
    log.info(
        "copytrade_started",
        run_mode=settings.run.mode,
        sizing_strategy=settings.sizing.strategy,
        slippage_model=settings.slippage.model,
        open_position_policy=settings.execution.open_position_policy,
    )
    return settings


def run_configured_backtest(config_path: str | Path | None = None) -> BacktestResult:
    settings = bootstrap(config_path)
    if settings.run.mode != "backtest":
        raise ConfigError(f"run.mode is {settings.run.mode!r}, expected 'backtest'")
    return run_backtest(settings)


async def run_live(
    venue: ExecutionVenue,
    source: AsyncIterable[TradeEvent],
    config_path: str | Path | None = None,
) -> BacktestReport:
    """Copy trades from ``source`` onto ``venue`` until the source ends."""
    settings = bootstrap(config_path)
    if settings.run.mode != "live":
        raise ConfigError(f"run.mode is {settings.run.mode!r}, expected 'live'")
    with TradeJournal(settings.storage.trade_log_path) as journal:
        engine = LiveCopyEngine.from_settings(settings, venue, journal=journal)
        return await engine.run(source)
