"""Deterministic replay of observed trades through sizing, simulation and the ledger.

Replays a historical trade stream in observed order. Each trade that passes
the filters is sized against the current ledger balance, filled by the
FillSimulator and booked into the Ledger. Any open positions left at the end
are marked to market so every copied trade shows up in the report.

Key features:
- Stable ``observed_at`` ordering, no wall clock and no randomness
- Per-trade skips counted by reason instead of aborting the run
- Configurable handling of signals on markets with an open position
- Optional JSON-lines journal of every detected, executed and failed trade
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Literal

import structlog

from copytrade.backtester.data import filter_by_date, load_trades_csv
from copytrade.backtester.metrics import BacktestReport, compute_report
from copytrade.backtester.simulator import FillSimulator
from copytrade.backtester.slippage import create_impact_model
from copytrade.config.settings import Settings
from copytrade.errors import LedgerError, SimulationError, SizingError, error_code
from copytrade.ledger.journal import NullJournal, TradeJournal
from copytrade.ledger.ledger import Ledger
from copytrade.models import ClosedPosition, Fill, Position, TradeEvent, opposite_side
from copytrade.risk.filters import TradeFilter
from copytrade.risk.sizing import PositionSizer

log = structlog.get_logger(__name__)

OpenPositionPolicy = Literal["skip", "net"]

PROGRESS_EVERY = 100


@dataclass
class BacktestResult:
    """Results from a replay run."""

    report: BacktestReport
    fills: list[Fill]
    closed_positions: list[ClosedPosition]
    skipped: dict[str, int] = field(default_factory=dict)
    trades_processed: int = 0
    final_balance: float = 0.0

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())


class ReplayEngine:
    """Replays observed trades against a simulated book.

    Example:
        engine = ReplayEngine.from_settings(settings)
        result = engine.run(load_trades_csv("./data/trades.csv"))
        print(result.report.format_report())
    """

    def __init__(
        self,
        sizer: PositionSizer,
        simulator: FillSimulator,
        initial_balance: float,
        trade_filter: TradeFilter | None = None,
        open_position_policy: OpenPositionPolicy = "skip",
        start: date | datetime | None = None,
        end: date | datetime | None = None,
        annualization_factor: float = 1.0,
        journal: TradeJournal | NullJournal | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            sizer: Caps each copied trade's size
            simulator: Produces fills against the impact model
            initial_balance: Starting cash
            trade_filter: Optional pre-sizing filter
            open_position_policy: "skip" ignores signals on a market with an
                open position; "net" closes it on an opposite-side signal
            start: Optional inclusive start bound on ``observed_at``
            end: Optional inclusive end bound on ``observed_at``
            annualization_factor: Multiplier under the Sharpe square root
            journal: Optional trade journal
        """
        if open_position_policy not in ("skip", "net"):
            raise ValueError(f"Unknown open_position_policy: {open_position_policy}")
        self.sizer = sizer
        self.simulator = simulator
        self.initial_balance = initial_balance
        self.trade_filter = trade_filter
        self.open_position_policy = open_position_policy
        self.start = start
        self.end = end
        self.annualization_factor = annualization_factor
        self.journal: TradeJournal | NullJournal = journal or NullJournal()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        journal: TradeJournal | NullJournal | None = None,
    ) -> ReplayEngine:
        model = create_impact_model(settings.slippage)
        return cls(
            sizer=PositionSizer(settings.sizing),
            simulator=FillSimulator(model, fee_rate=settings.fee_rate),
            initial_balance=settings.backtest.initial_balance,
            trade_filter=TradeFilter.from_config(settings.execution),
            open_position_policy=settings.execution.open_position_policy,
            start=settings.backtest.start_date,
            end=settings.backtest.end_date,
            annualization_factor=settings.backtest.sharpe_annualization,
            journal=journal,
        )

    def run(
        self,
        trades: Iterable[TradeEvent],
        final_prices: Mapping[str, float] | None = None,
    ) -> BacktestResult:
        """Replay ``trades`` and return the run's result.

        Args:
            trades: Observed trades, in any order
            final_prices: Exit prices for positions still open at the end;
                defaults to the last observed reference price per market

        Returns:
            BacktestResult with the report, fills, closes and skip counts
        """
        ordered = sorted(
            filter_by_date(trades, self.start, self.end),
            key=lambda t: t.observed_at,
        )
        ledger = Ledger(self.initial_balance)
        fills: list[Fill] = []
        skipped: Counter[str] = Counter()
        last_prices: dict[str, float] = {}
        last_time: datetime | None = None

        log.info(
            "backtest_started",
            trades=len(ordered),
            initial_balance=self.initial_balance,
            policy=self.open_position_policy,
        )

        for processed, trade in enumerate(ordered, start=1):
            last_prices[trade.market_id] = trade.reference_price
            last_time = trade.observed_at
            self.journal.log_detected(trade, at=trade.observed_at)

            reason = self._process_trade(trade, ledger, fills)
            if reason is not None:
                skipped[reason] += 1
                self.journal.log_failed(trade, reason, at=trade.observed_at)

            if processed % PROGRESS_EVERY == 0:
                log.info(
                    "backtest_progress",
                    processed=processed,
                    total=len(ordered),
                    balance=ledger.balance,
                    open_positions=len(ledger.open_positions),
                )

        exit_prices = final_prices if final_prices is not None else last_prices
        for closed in ledger.close_all(exit_prices, at=last_time, fee_rate=self.simulator.fee_rate):
            self.journal.log_closed(closed)
        self.journal.flush()

        closed_positions = ledger.closed_positions
        report = compute_report(closed_positions, self.initial_balance, self.annualization_factor)

        log.info(
            "backtest_completed",
            trades_processed=len(ordered),
            fills=len(fills),
            closed=len(closed_positions),
            skipped=dict(skipped),
            total_pnl=report.total_pnl,
            final_balance=ledger.balance,
        )

        return BacktestResult(
            report=report,
            fills=fills,
            closed_positions=closed_positions,
            skipped=dict(skipped),
            trades_processed=len(ordered),
            final_balance=ledger.balance,
        )

    def _process_trade(self, trade: TradeEvent, ledger: Ledger, fills: list[Fill]) -> str | None:
        """Copy one trade; return a skip reason or None when a position was opened."""
        if self.trade_filter is not None:
            reason = self.trade_filter.rejection_reason(trade)
            if reason is not None:
                return reason

        position = ledger.get_position(trade.market_id)
        if position is not None:
            if self.open_position_policy == "skip":
                return "POSITION_ALREADY_OPEN"
            if position.side == trade.side:
                return "SAME_SIDE_POSITION_OPEN"
            return self._net_close(trade, position, ledger)

        try:
            intended = self.sizer.intend(trade, ledger.balance)
            fill = self.simulator.execute(
                intended.side,
                intended.size,
                intended.reference_price,
                market_id=intended.market_id,
                available_balance=ledger.available_balance,
                at=trade.observed_at,
                trade_id=intended.trade_id,
            )
            ledger.open(fill)
        except (SizingError, SimulationError, LedgerError) as exc:
            log.debug(
                "trade_skipped",
                trade_id=trade.id,
                market_id=trade.market_id,
                reason=error_code(exc),
                error=str(exc),
            )
            return error_code(exc)

        fills.append(fill)
        self.journal.log_executed(trade, fill, at=trade.observed_at)
        return None

    def _net_close(self, trade: TradeEvent, position: Position, ledger: Ledger) -> str | None:
        """Close the open position on an opposite-side signal."""
        try:
            exit_price = self.simulator.expected_price(
                opposite_side(position.side), position.size, trade.reference_price
            )
        except SimulationError as exc:
            return error_code(exc)
        closed = ledger.close(
            trade.market_id,
            exit_price,
            at=trade.observed_at,
            fee_rate=self.simulator.fee_rate,
        )
        self.journal.log_closed(closed)
        log.debug(
            "position_netted",
            trade_id=trade.id,
            market_id=trade.market_id,
            exit_price=exit_price,
            pnl=closed.pnl,
        )
        return None


def run_backtest(
    settings: Settings,
    trades: Iterable[TradeEvent] | None = None,
    out_dir: str | Path | None = None,
    final_prices: Mapping[str, float] | None = None,
) -> BacktestResult:
    """Convenience function for a configured backtest run.

    Args:
        settings: Loaded settings
        trades: Trades to replay; loaded from ``backtest.data_file`` if omitted
        out_dir: Where to write the journal and report artifacts; defaults to
            ``storage.results_dir`` with the journal at ``storage.trade_log_path``
        final_prices: Optional exit prices for positions open at the end

    Returns:
        BacktestResult with backtest results
    """
    from copytrade.backtester.reporting import generate_report

    if trades is None:
        trades = load_trades_csv(settings.backtest.data_file)

    if out_dir is None:
        out_path = Path(settings.storage.results_dir)
        journal_path = Path(settings.storage.trade_log_path)
    else:
        out_path = Path(out_dir)
        journal_path = out_path / "trades.jsonl"

    with TradeJournal(journal_path) as journal:
        engine = ReplayEngine.from_settings(settings, journal=journal)
        result = engine.run(trades, final_prices=final_prices)
    generate_report(result, out_path)
    return result
