"""Historical trade loading utilities."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timezone
from pathlib import Path

import pandas as pd

from copytrade.models import TradeEvent

_COLUMN_ALIASES = {
    "market": "market_id",
    "price": "reference_price",
    "timestamp": "observed_at",
    "size_usdc": "size",
    "trade_id": "id",
}


def _convert_timestamp_series(df: pd.DataFrame, col: str) -> None:
    """Convert a timestamp column in place to datetime with UTC timezone."""
    ts = df[col]
    numeric_ts = pd.to_numeric(ts, errors="coerce")
    numeric_series = pd.Series(numeric_ts)
    if numeric_series.notna().all():
        max_val = float(numeric_series.max())
        unit = "ms" if max_val > 1_000_000_000_000 else "s"
        df[col] = pd.to_datetime(numeric_series, unit=unit, utc=True)
    else:
        df[col] = pd.to_datetime(ts, utc=True)


def load_trades_csv(path: str | Path) -> list[TradeEvent]:
    """Load observed trades from CSV.

    Required columns (case-insensitive, aliases in parentheses):
        market_id (market), side, reference_price (price),
        size (size_usdc), observed_at (timestamp)
    Optional: id (trade_id), trader, trader_win_rate

    Returns:
        Trades in stable timestamp order.

    Raises:
        ValueError: If required columns are missing or a side is unknown.
    """
    df = pd.read_csv(path)
    df = df.rename(columns={c: c.lower() for c in df.columns})
    df = df.rename(columns={k: v for k, v in _COLUMN_ALIASES.items() if v not in df.columns})

    required = ["market_id", "side", "reference_price", "size", "observed_at"]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Trade CSV {path} is missing columns {missing}. Found: {list(df.columns)}")

    df["side"] = df["side"].astype(str).str.upper()
    unknown = set(df["side"]) - {"BUY", "SELL"}
    if unknown:
        raise ValueError(f"Unknown trade sides in {path}: {sorted(unknown)}")

    for col in ("reference_price", "size"):
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.dropna(subset=["reference_price", "size"])
    _convert_timestamp_series(df, "observed_at")
    df = df.sort_values("observed_at", kind="stable")

    has_id = "id" in df.columns
    has_trader = "trader" in df.columns
    has_win_rate = "trader_win_rate" in df.columns

    trades: list[TradeEvent] = []
    for row_num, row in enumerate(df.itertuples(index=False)):
        win_rate = getattr(row, "trader_win_rate") if has_win_rate else None
        trades.append(
            TradeEvent(
                id=str(row.id) if has_id else f"trade-{row_num}",
                market_id=str(row.market_id),
                side=row.side,
                reference_price=float(row.reference_price),
                size=float(row.size),
                observed_at=row.observed_at.to_pydatetime(),
                trader=str(row.trader) if has_trader and pd.notna(row.trader) else None,
                trader_win_rate=float(win_rate) if win_rate is not None and pd.notna(win_rate) else None,
            )
        )
    return trades


def _as_utc_bound(value: date | datetime | None, end: bool) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    # Whole-day bounds: start at 00:00:00, end at 23:59:59.999999
    return datetime.combine(value, time.max if end else time.min, tzinfo=timezone.utc)


def filter_by_date(
    trades: Iterable[TradeEvent],
    start: date | datetime | None = None,
    end: date | datetime | None = None,
) -> list[TradeEvent]:
    """Keep trades observed within [start, end]; date bounds cover whole days."""
    start_at = _as_utc_bound(start, end=False)
    end_at = _as_utc_bound(end, end=True)
    kept: list[TradeEvent] = []
    for trade in trades:
        observed = trade.observed_at
        if observed.tzinfo is None:
            observed = observed.replace(tzinfo=timezone.utc)
        if start_at is not None and observed < start_at:
            continue
        if end_at is not None and observed > end_at:
            continue
        kept.append(trade)
    return kept
