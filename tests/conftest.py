from __future__ import annotations

import re
import shutil
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import pytest

from copytrade.config.settings import Settings
from copytrade.models import TradeEvent

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _safe_node_name(name: str) -> str:
    # keep alnum, dash, underscore, dot
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or "test"


@pytest.fixture
def workspace_tmp_path(request: pytest.FixtureRequest) -> Path:
    """Temp dir rooted in the workspace rather than the system temp dir."""
    root = Path.cwd() / ".pytest_tmp_workspace" / _safe_node_name(request.node.name) / uuid4().hex
    root.mkdir(parents=True, exist_ok=True)
    try:
        yield root
    finally:
        shutil.rmtree(root, ignore_errors=True)


@pytest.fixture
def make_trade() -> Callable[..., TradeEvent]:
    """Factory for observed trades; ``minutes`` offsets from a fixed start time."""
    counter = iter(range(1, 1_000_000))

    def _make(
        market_id: str = "market-1",
        side: str = "BUY",
        reference_price: float = 0.5,
        size: float = 100.0,
        minutes: float = 0.0,
        **kwargs,
    ) -> TradeEvent:
        return TradeEvent(
            id=kwargs.pop("id", f"t{next(counter)}"),
            market_id=market_id,
            side=side,
            reference_price=reference_price,
            size=size,
            observed_at=T0 + timedelta(minutes=minutes),
            **kwargs,
        )

    return _make


@pytest.fixture
def settings() -> Settings:
    """Permissive settings: no size filters, linear impact, no fees."""
    return Settings(
        sizing={
            "strategy": "hybrid",
            "max_position_size_absolute": 1000.0,
            "max_position_size_relative": 0.1,
            "priority": "absolute",
            "min_position_size": 1.0,
        },
        slippage={"model": "linear", "depth_coefficient": 100_000.0},
        execution={"min_trade_size": 0.0, "max_trade_size": 1_000_000.0},
        backtest={"initial_balance": 10_000.0},
        _env_file=None,
    )
