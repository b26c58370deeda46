"""Backtest reporting utilities: summary JSON, closed-position CSV, console table."""

from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from copytrade.backtester.metrics import BacktestReport
from copytrade.models import ClosedPosition

if TYPE_CHECKING:
    from copytrade.backtester.replay_engine import BacktestResult


def write_closed_positions_csv(closed_positions: list[ClosedPosition], path: Path) -> None:
    """Write closed positions to CSV file."""
    fieldnames = [
        "trade_id",
        "market_id",
        "side",
        "size",
        "entry_price",
        "exit_price",
        "opened_at",
        "closed_at",
        "pnl",
        "net_pnl",
        "fees",
    ]

    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for closed in closed_positions:
            row = closed.to_dict()
            writer.writerow(
                {
                    "trade_id": row["trade_id"] or "",
                    "market_id": row["market_id"],
                    "side": row["side"],
                    "size": row["size"],
                    "entry_price": row["entry_price"],
                    "exit_price": row["exit_price"],
                    "opened_at": row["opened_at"] or "",
                    "closed_at": row["closed_at"] or "",
                    "pnl": round(row["pnl"], 6),
                    "net_pnl": round(row["net_pnl"], 6),
                    "fees": round(row["fees"], 6),
                }
            )


def write_summary_json(summary: dict[str, Any], path: Path) -> None:
    """Write summary metrics to JSON file."""
    with open(path, "w") as f:
        json.dump(summary, f, indent=2, default=str)


def print_summary(report: BacktestReport) -> None:
    """Print a formatted summary to console."""
    print()
    print(report.format_report())


def build_summary(result: BacktestResult) -> dict[str, Any]:
    """Report metrics plus run counters as one flat dictionary."""
    summary: dict[str, Any] = result.report.to_dict()
    summary.update(
        {
            "trades_processed": result.trades_processed,
            "fills": len(result.fills),
            "skipped": dict(result.skipped),
            "final_cash_balance": result.final_balance,
        }
    )
    return summary


def generate_report(result: BacktestResult, out_dir: Path) -> dict[str, Any]:
    """Generate full backtest report with all artifacts.

    Creates:
    - closed_positions.csv: One row per closed position
    - summary.json: All computed metrics and run counters

    Returns the summary dictionary.
    """
    out_dir.mkdir(parents=True, exist_ok=True)

    summary = build_summary(result)
    summary["generated_at"] = datetime.now(timezone.utc).isoformat()

    write_closed_positions_csv(result.closed_positions, out_dir / "closed_positions.csv")
    write_summary_json(summary, out_dir / "summary.json")

    print_summary(result.report)
    print(f"\nReport saved to: {out_dir}")
    print(f"  - closed_positions.csv ({len(result.closed_positions)} positions)")
    print("  - summary.json")

    return summary
