"""Performance metrics over a closed-position sequence.

All figures are recomputable from the ledger's closed positions at any time.

Formulas:
    win_rate      = count(pnl > 0) / total * 100            (0 if no trades)
    avg_win       = sum(pnl > 0) / count(pnl > 0)           (0 if none)
    avg_loss      = sum(|pnl < 0|) / count(pnl < 0)         (0 if none)
    profit_factor = avg_win / avg_loss; PROFIT_FACTOR_CAP when there are
                    wins but no losses, 0 when there are neither
    roi           = total_pnl / initial_balance * 100
    max_drawdown  = max over closing order of (peak - balance) / peak * 100,
                    balance = initial_balance + cumulative pnl, peak is the
                    running maximum starting at initial_balance
    sharpe_ratio  = mean(pnl) / std(pnl, ddof=0) * sqrt(annualization_factor),
                    0 when there are no trades or the deviation is 0
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import asdict, dataclass

import numpy as np

from copytrade.models import ClosedPosition

PROFIT_FACTOR_CAP = 1000.0


@dataclass(frozen=True)
class BacktestReport:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_pnl: float
    roi: float
    avg_win: float
    avg_loss: float
    profit_factor: float
    max_drawdown: float
    sharpe_ratio: float
    initial_balance: float
    final_balance: float
    total_fees: float = 0.0

    def to_dict(self) -> dict[str, float | int]:
        return asdict(self)

    def format_report(self) -> str:
        rows = [
            ("Total Trades", f"{self.total_trades}"),
            ("Winning Trades", f"{self.winning_trades}"),
            ("Losing Trades", f"{self.losing_trades}"),
            ("Win Rate", f"{self.win_rate:.2f}%"),
            None,
            ("Initial Balance", f"{self.initial_balance:.2f}"),
            ("Final Balance", f"{self.final_balance:.2f}"),
            ("Total P&L", f"{self.total_pnl:.2f}"),
            ("ROI", f"{self.roi:.2f}%"),
            None,
            ("Average Win", f"{self.avg_win:.2f}"),
            ("Average Loss", f"{self.avg_loss:.2f}"),
            ("Profit Factor", f"{self.profit_factor:.2f}"),
            ("Max Drawdown", f"{self.max_drawdown:.2f}%"),
            ("Sharpe Ratio", f"{self.sharpe_ratio:.2f}"),
            ("Total Fees", f"{self.total_fees:.2f}"),
        ]
        lines = ["=" * 60, f"{'BACKTEST RESULTS':^60}", "=" * 60]
        for row in rows:
            if row is None:
                lines.append("-" * 60)
                continue
            label, value = row
            lines.append(f"  {label + ':':<20}{value:>38}")
        lines.append("=" * 60)
        return "\n".join(lines)


def max_drawdown_pct(pnls: Sequence[float], initial_balance: float) -> float:
    """Largest running-peak drawdown of the cumulative balance, in percent."""
    peak = initial_balance
    balance = initial_balance
    max_dd = 0.0
    for pnl in pnls:
        balance += pnl
        if balance > peak:
            peak = balance
        if peak > 0:
            max_dd = max(max_dd, (peak - balance) / peak)
    return max_dd * 100


def sharpe_ratio(pnls: Sequence[float], annualization_factor: float = 1.0) -> float:
    """Per-trade Sharpe ratio with population standard deviation (ddof=0)."""
    if len(pnls) == 0:
        return 0.0
    values = np.asarray(pnls, dtype=float)
    std = float(values.std(ddof=0))
    if std == 0:
        return 0.0
    return float(values.mean()) / std * math.sqrt(annualization_factor)


def compute_report(
    closed_positions: Sequence[ClosedPosition],
    initial_balance: float,
    annualization_factor: float = 1.0,
) -> BacktestReport:
    """Compute the performance report for closed positions in closing order."""
    pnls = [c.pnl for c in closed_positions]
    wins = [p for p in pnls if p > 0]
    losses = [abs(p) for p in pnls if p < 0]
    total = len(pnls)
    total_pnl = sum(pnls)

    win_rate = len(wins) / total * 100 if total else 0.0
    avg_win = sum(wins) / len(wins) if wins else 0.0
    avg_loss = sum(losses) / len(losses) if losses else 0.0

    if avg_loss > 0:
        profit_factor = avg_win / avg_loss
    elif avg_win > 0:
        profit_factor = PROFIT_FACTOR_CAP
    else:
        profit_factor = 0.0

    total_fees = sum(c.fees for c in closed_positions)
    roi = total_pnl / initial_balance * 100 if initial_balance > 0 else 0.0

    return BacktestReport(
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=win_rate,
        total_pnl=total_pnl,
        roi=roi,
        avg_win=avg_win,
        avg_loss=avg_loss,
        profit_factor=profit_factor,
        max_drawdown=max_drawdown_pct(pnls, initial_balance),
        sharpe_ratio=sharpe_ratio(pnls, annualization_factor),
        initial_balance=initial_balance,
        final_balance=initial_balance + total_pnl - total_fees,
        total_fees=total_fees,
    )


class RunningMetrics:
    """Live view of performance that folds in closes as they happen.

    Counters are updated per close; ``snapshot`` always recomputes from the
    recorded sequence so it matches ``compute_report`` exactly.
    """

    def __init__(self, initial_balance: float, annualization_factor: float = 1.0) -> None:
        self.initial_balance = initial_balance
        self.annualization_factor = annualization_factor
        self._closed: list[ClosedPosition] = []
        self._report: BacktestReport | None = None
        self.total_pnl = 0.0
        self.winning_trades = 0
        self.losing_trades = 0

    def record(self, closed: ClosedPosition) -> None:
        self._closed.append(closed)
        self.total_pnl += closed.pnl
        if closed.pnl > 0:
            self.winning_trades += 1
        elif closed.pnl < 0:
            self.losing_trades += 1
        self._report = None

    @property
    def total_trades(self) -> int:
        return len(self._closed)

    def snapshot(self) -> BacktestReport:
        if self._report is None:
            self._report = compute_report(
                self._closed, self.initial_balance, self.annualization_factor
            )
        return self._report
