"""
Configuration management with Pydantic validation.

Loads settings from YAML config file and environment variables.
"""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from copytrade.errors import ConfigError


class RunConfig(BaseModel):
    """Runtime mode configuration."""

    mode: Literal["backtest", "live"] = Field(default="backtest", validation_alias="RUN_MODE")

    model_config = {
        "populate_by_name": True,
    }


class SizingConfig(BaseModel):
    """Position sizing configuration - contains hard caps."""

    strategy: Literal["absolute", "relative", "hybrid"] = "hybrid"
    max_position_size_absolute: float = Field(default=1000.0, gt=0)
    max_position_size_relative: float = Field(default=0.1, gt=0, le=1.0)
    priority: Literal["absolute", "relative"] = "absolute"
    # Floor below which a sized trade is rejected as dust
    min_position_size: float = Field(default=1.0, ge=0)


class SlippageConfig(BaseModel):
    """Price-impact model configuration."""

    model: Literal["linear", "percentage", "market_impact"] = "linear"
    depth_coefficient: float = Field(default=100_000.0, gt=0)
    rate: float = Field(default=0.005, ge=0.0, lt=1.0)
    impact_param: float = Field(default=0.001, ge=0.0)


class ExecutionConfig(BaseModel):
    """Order execution configuration."""

    order_type: Literal["FOK", "GTC", "GTD"] = "FOK"
    gtd_duration_seconds: int = Field(default=300, ge=1, le=86_400)
    order_poll_interval_ms: int = Field(default=500, ge=10, le=60_000)
    order_confirmation_timeout_ms: int = Field(default=30_000, ge=100, le=600_000)
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_initial_delay_ms: int = Field(default=1000, ge=0, le=10_000)
    retry_max_delay_ms: int = Field(default=10_000, ge=0, le=60_000)
    min_trade_size: float = Field(default=5.0, ge=0)
    max_trade_size: float = Field(default=50_000.0, gt=0)
    allowed_markets: list[str] | None = None
    min_trader_win_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    fee_rate_bps: int = Field(default=0, ge=0, le=1000)
    # What to do with a signal on a market that already has an open position
    open_position_policy: Literal["skip", "net"] = "skip"
    workers: int = Field(default=4, ge=1, le=64)
    queue_size: int = Field(default=100, ge=1, le=10_000)
    enqueue_timeout_sec: float = Field(default=5.0, gt=0, le=300)

    @model_validator(mode="after")
    def validate_trade_size_range(self) -> ExecutionConfig:
        if self.min_trade_size >= self.max_trade_size:
            raise ValueError(
                f"min_trade_size ({self.min_trade_size}) must be less than "
                f"max_trade_size ({self.max_trade_size})"
            )
        if self.retry_max_delay_ms < self.retry_initial_delay_ms:
            raise ValueError("retry_max_delay_ms cannot be below retry_initial_delay_ms")
        return self

    @property
    def fee_rate(self) -> float:
        return self.fee_rate_bps / 10_000


class BacktestConfig(BaseModel):
    """Backtest replay configuration."""

    start_date: date | None = None
    end_date: date | None = None
    initial_balance: float = Field(default=10_000.0, gt=0)
    data_file: str = "./data/trades.csv"
    apply_fees: bool = False
    # Multiplier under the square root in the Sharpe ratio (1.0 = per-trade)
    sharpe_annualization: float = Field(default=1.0, gt=0)

    @model_validator(mode="after")
    def validate_date_range(self) -> BacktestConfig:
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError(
                f"start_date ({self.start_date}) cannot be after end_date ({self.end_date})"
            )
        return self


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    trade_log_path: str = "./data/trades.jsonl"
    results_dir: str = "./data/backtests"
    # None disables the rotating error log
    logs_path: str | None = "./logs"


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    error_log_max_bytes: int = Field(default=5_000_000, ge=100_000, le=50_000_000)
    error_log_backup_count: int = Field(default=3, ge=1, le=20)


class Settings(BaseSettings):
    """Main application settings."""

    run: RunConfig = Field(default_factory=RunConfig)
    sizing: SizingConfig = Field(default_factory=SizingConfig)
    slippage: SlippageConfig = Field(default_factory=SlippageConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
    }

    @property
    def fee_rate(self) -> float:
        """Fee rate as a decimal fraction for the active mode."""
        if self.run.mode == "backtest" and not self.backtest.apply_fees:
            return 0.0
        return self.execution.fee_rate


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML config file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file values
    3. Default values

    Raises:
        ConfigError: If any value is out of range or contradicts another.
    """
    config_data = {}

    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            config_data = yaml.safe_load(f) or {}

    env_run_mode = os.environ.get("RUN_MODE")
    if env_run_mode:
        config_data.setdefault("run", {})["mode"] = env_run_mode

    env_path = config_file.parent / ".env"
    try:
        return Settings(**config_data, _env_file=env_path)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_file}: {exc}") from exc


def create_default_config(path: str | Path = "config.yaml") -> None:
    """Create a default configuration file."""
    default_config = {
        "run": {"mode": "backtest"},
        "sizing": {
            "strategy": "hybrid",
            "max_position_size_absolute": 1000.0,
            "max_position_size_relative": 0.1,
            "priority": "absolute",
            "min_position_size": 1.0,
        },
        "slippage": {
            "model": "linear",
            "depth_coefficient": 100000.0,
            "rate": 0.005,
            "impact_param": 0.001,
        },
        "execution": {
            "order_type": "FOK",
            "gtd_duration_seconds": 300,
            "order_poll_interval_ms": 500,
            "order_confirmation_timeout_ms": 30000,
            "max_retries": 3,
            "retry_initial_delay_ms": 1000,
            "retry_max_delay_ms": 10000,
            "min_trade_size": 5.0,
            "max_trade_size": 50000.0,
            "fee_rate_bps": 0,
            "open_position_policy": "skip",
            "workers": 4,
            "queue_size": 100,
        },
        "backtest": {
            "start_date": "2024-01-01",
            "end_date": "2024-12-31",
            "initial_balance": 10000.0,
            "data_file": "./data/trades.csv",
            "apply_fees": False,
            "sharpe_annualization": 1.0,
        },
        "storage": {
            "trade_log_path": "./data/trades.jsonl",
            "results_dir": "./data/backtests",
            "logs_path": "./logs",
        },
        "monitoring": {
            "log_level": "INFO",
            "error_log_max_bytes": 5000000,
            "error_log_backup_count": 3,
        },
    }

    with open(path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
