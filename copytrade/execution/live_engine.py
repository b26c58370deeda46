"""Live copy-trading engine.

Observed trades are routed to a fixed pool of workers by a stable hash of
their market, so one market's orders are always handled in arrival order by
the same worker while other markets progress concurrently. Sizing against
the shared balance and reserving the order's cost happen in one step with no
suspension point in between.
"""

from __future__ import annotations

import asyncio
import zlib
from collections import Counter
from collections.abc import AsyncIterable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from copytrade.backtester.metrics import BacktestReport, RunningMetrics
from copytrade.backtester.simulator import FillSimulator
from copytrade.backtester.slippage import create_impact_model
from copytrade.config.settings import Settings
from copytrade.errors import (
    ExecutionError,
    InsufficientBalance,
    LedgerError,
    SimulationError,
    SizingError,
    error_code,
)
from copytrade.execution.executor import ExecutionVenue, OrderExecutor
from copytrade.execution.lifecycle import Clock, OrderResolution, OrderState
from copytrade.ledger.journal import NullJournal, TradeJournal
from copytrade.ledger.ledger import Ledger
from copytrade.models import ClosedPosition, Fill, OrderIntent, Position, TradeEvent, opposite_side
from copytrade.risk.filters import TradeFilter
from copytrade.risk.sizing import PositionSizer


@dataclass(frozen=True)
class LiveExecution:
    """A real fill next to the price the impact model predicted for it."""

    fill: Fill
    expected_price: float
    # Booked although its real cost exceeded the unreserved balance
    over_budget: bool = False

    @property
    def slippage_vs_model(self) -> float:
        return self.fill.executed_price - self.expected_price


def worker_index(market_id: str, workers: int) -> int:
    """Stable worker slot for a market, identical across processes."""
    return zlib.crc32(market_id.encode("utf-8")) % workers


class LiveCopyEngine:
    """Copies observed trades onto a venue through sized, tracked orders.

    Example:
        engine = LiveCopyEngine.from_settings(settings, venue)
        await engine.run(trade_stream)
        print(engine.metrics.snapshot().format_report())
    """

    def __init__(
        self,
        ledger: Ledger,
        sizer: PositionSizer,
        simulator: FillSimulator,
        executor: OrderExecutor,
        trade_filter: TradeFilter | None = None,
        workers: int = 4,
        queue_size: int = 100,
        enqueue_timeout: float = 5.0,
        open_position_policy: str = "skip",
        journal: TradeJournal | NullJournal | None = None,
        annualization_factor: float = 1.0,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if open_position_policy not in ("skip", "net"):
            raise ValueError(f"Unknown open_position_policy: {open_position_policy}")
        self.ledger = ledger
        self.sizer = sizer
        self.simulator = simulator
        self.executor = executor
        self.trade_filter = trade_filter
        self.workers = workers
        self.queue_size = queue_size
        self.enqueue_timeout = enqueue_timeout
        self.open_position_policy = open_position_policy
        self.journal: TradeJournal | NullJournal = journal or NullJournal()
        self.metrics = RunningMetrics(ledger.initial_balance, annualization_factor)
        self.executions: list[LiveExecution] = []
        self.skipped: Counter[str] = Counter()
        self.log = structlog.get_logger(__name__)

        self._queues: list[asyncio.Queue[TradeEvent | None]] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        venue: ExecutionVenue,
        ledger: Ledger | None = None,
        journal: TradeJournal | NullJournal | None = None,
        clock: Clock | None = None,
    ) -> LiveCopyEngine:
        execution = settings.execution
        return cls(
            ledger=ledger or Ledger(settings.backtest.initial_balance),
            sizer=PositionSizer(settings.sizing),
            simulator=FillSimulator(
                create_impact_model(settings.slippage), fee_rate=settings.fee_rate
            ),
            executor=OrderExecutor.from_config(venue, execution, clock=clock),
            trade_filter=TradeFilter.from_config(execution),
            workers=execution.workers,
            queue_size=execution.queue_size,
            enqueue_timeout=execution.enqueue_timeout_sec,
            open_position_policy=execution.open_position_policy,
            journal=journal,
            annualization_factor=settings.backtest.sharpe_annualization,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._queues = [asyncio.Queue(maxsize=self.queue_size) for _ in range(self.workers)]
        self._tasks = [
            asyncio.create_task(self._worker(i, queue), name=f"copytrade-worker-{i}")
            for i, queue in enumerate(self._queues)
        ]
        self._running = True
        self.log.info("live_engine_started", workers=self.workers, queue_size=self.queue_size)

    async def submit(self, trade: TradeEvent) -> bool:
        """Queue a trade for its market's worker; False if the queue stayed full."""
        if not self._running:
            raise RuntimeError("LiveCopyEngine is not running")
        queue = self._queues[worker_index(trade.market_id, self.workers)]
        try:
            await asyncio.wait_for(queue.put(trade), timeout=self.enqueue_timeout)
        except asyncio.TimeoutError:
            self.skipped["QUEUE_FULL"] += 1
            self.journal.log_failed(trade, "QUEUE_FULL")
            self.log.warning(
                "trade_dropped_queue_full",
                trade_id=trade.id,
                market_id=trade.market_id,
                timeout=self.enqueue_timeout,
            )
            return False
        return True

    async def run(self, source: AsyncIterable[TradeEvent]) -> BacktestReport:
        """Consume ``source`` until exhausted, then drain the workers."""
        await self.start()
        try:
            async for trade in source:
                await self.submit(trade)
        finally:
            await self.stop()
        return self.metrics.snapshot()

    async def stop(self, timeout: float = 60.0) -> None:
        """Let workers finish queued trades, cancelling them after ``timeout``."""
        if not self._running:
            return
        self._running = False
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        for index, queue in enumerate(self._queues):
            try:
                await asyncio.wait_for(queue.put(None), timeout=max(deadline - loop.time(), 0.0))
            except asyncio.TimeoutError:
                self.log.warning("live_engine_stop_signal_blocked", worker=index)
        _, pending = await asyncio.wait(self._tasks, timeout=max(deadline - loop.time(), 0.0))
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self.log.warning("live_engine_workers_cancelled", count=len(pending))
        self._tasks = []
        self._queues = []
        self.journal.flush()
        self.log.info(
            "live_engine_stopped",
            fills=len(self.executions),
            closed=self.metrics.total_trades,
            skipped=dict(self.skipped),
            balance=self.ledger.balance,
        )

    async def _worker(self, index: int, queue: asyncio.Queue[TradeEvent | None]) -> None:
        while True:
            trade = await queue.get()
            try:
                if trade is None:
                    return
                reason = await self.handle_trade(trade)
                if reason is not None:
                    self.skipped[reason] += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                self.log.exception(
                    "trade_handling_failed",
                    worker=index,
                    trade_id=trade.id if trade else None,
                )
            finally:
                queue.task_done()

    async def handle_trade(self, trade: TradeEvent) -> str | None:
        """Copy one trade; return a skip reason or None when an order was booked."""
        self.journal.log_detected(trade)

        if self.trade_filter is not None:
            reason = self.trade_filter.rejection_reason(trade)
            if reason is not None:
                self.journal.log_failed(trade, reason)
                return reason

        position = self.ledger.get_position(trade.market_id)
        if position is not None:
            if self.open_position_policy == "skip":
                reason = "POSITION_ALREADY_OPEN"
            elif position.side == trade.side:
                reason = "SAME_SIDE_POSITION_OPEN"
            else:
                return await self._net_close(trade, position)
            self.journal.log_failed(trade, reason)
            return reason

        try:
            intent, expected_price = self._size_and_reserve(trade)
        except (SizingError, SimulationError, LedgerError) as exc:
            reason = error_code(exc)
            self.log.info("trade_skipped", trade_id=trade.id, market_id=trade.market_id, reason=reason)
            self.journal.log_failed(trade, reason)
            return reason

        try:
            return await self._execute_and_book(trade, intent, expected_price)
        finally:
            # No-op once the fill is booked; frees the slot on every other exit
            self.ledger.release(trade.market_id)

    async def _execute_and_book(
        self,
        trade: TradeEvent,
        intent: OrderIntent,
        expected_price: float,
    ) -> str | None:
        try:
            resolution = await self.executor.execute(intent)
        except ExecutionError as exc:
            self.journal.log_failed(trade, str(exc))
            return error_code(exc)

        if not resolution.has_fill:
            reason = f"ORDER_{resolution.state.value}"
            self.journal.log_failed(trade, reason)
            return reason

        fill = self._fill_from(resolution, trade, expected_price)
        over_budget = False
        try:
            self.ledger.open(fill)
        except InsufficientBalance as exc:
            # The venue already filled; the position exists whether or not it fits.
            over_budget = True
            self.log.error(
                "fill_over_budget",
                order_id=resolution.order_id,
                market_id=trade.market_id,
                required=exc.required,
                available=exc.available,
            )
            self.ledger.open(fill, enforce_balance=False)
        except LedgerError as exc:
            self.log.error(
                "fill_not_booked",
                order_id=resolution.order_id,
                market_id=trade.market_id,
                error=str(exc),
            )
            self.journal.log_failed(trade, str(exc))
            return error_code(exc)

        execution = LiveExecution(fill=fill, expected_price=expected_price, over_budget=over_budget)
        self.executions.append(execution)
        self.journal.log_executed(trade, fill)
        self.log.info(
            "trade_copied",
            trade_id=trade.id,
            market_id=trade.market_id,
            side=fill.side,
            size=fill.size,
            executed_price=fill.executed_price,
            expected_price=expected_price,
            slippage=fill.slippage,
            slippage_vs_model=execution.slippage_vs_model,
            partial=fill.is_partial,
            over_budget=over_budget,
        )
        return None

    def _size_and_reserve(self, trade: TradeEvent) -> tuple[OrderIntent, float]:
        """Size against the unreserved balance and earmark the order's cost.

        Runs without awaiting so no other worker can observe the balance
        between the sizing read and the reservation.
        """
        intended = self.sizer.intend(trade, self.ledger.available_balance)
        expected_price = self.simulator.expected_price(
            intended.side, intended.size, intended.reference_price
        )
        amount = 0.0
        if intended.side == "BUY":
            amount = intended.size * expected_price * (1 + self.simulator.fee_rate)
        self.ledger.reserve(intended.market_id, amount)
        intent = self.executor.build_intent(
            intended.market_id,
            intended.side,
            intended.size,
            expected_price,
            trade_id=intended.trade_id,
        )
        return intent, expected_price

    def _fill_from(
        self,
        resolution: OrderResolution,
        trade: TradeEvent,
        expected_price: float,
    ) -> Fill:
        executed_price = (
            resolution.avg_price if resolution.avg_price is not None else expected_price
        )
        cost = resolution.filled_size * executed_price
        return Fill(
            market_id=trade.market_id,
            side=resolution.intent.side,
            size=resolution.filled_size,
            executed_price=executed_price,
            reference_price=trade.reference_price,
            fee=cost * self.simulator.fee_rate,
            cost=cost,
            at=datetime.now(timezone.utc),
            trade_id=trade.id,
            is_partial=resolution.state == OrderState.PARTIALLY_FILLED,
        )

    async def _net_close(self, trade: TradeEvent, position: Position) -> str | None:
        """Exit ``position`` with an opposite-side order.

        A partial exit closes only the filled shares; the rest stays open.
        """
        close_side = opposite_side(position.side)
        try:
            expected_price = self.simulator.expected_price(
                close_side, position.size, trade.reference_price
            )
        except SimulationError as exc:
            self.journal.log_failed(trade, str(exc))
            return error_code(exc)
        intent = self.executor.build_intent(
            trade.market_id,
            close_side,
            position.size,
            expected_price,
            trade_id=trade.id,
        )
        try:
            resolution = await self.executor.execute(intent)
        except ExecutionError as exc:
            self.journal.log_failed(trade, str(exc))
            return error_code(exc)
        if not resolution.has_fill:
            reason = f"ORDER_{resolution.state.value}"
            self.journal.log_failed(trade, reason)
            return reason
        exit_size = min(resolution.filled_size, position.size)
        if exit_size < position.size:
            self.log.warning(
                "partial_exit_fill",
                market_id=trade.market_id,
                filled_size=exit_size,
                position_size=position.size,
                remaining=position.size - exit_size,
            )
        exit_price = resolution.avg_price if resolution.avg_price is not None else expected_price
        self.close_position(trade.market_id, exit_price, size=exit_size)
        return None

    def close_position(
        self,
        market_id: str,
        exit_price: float,
        at: datetime | None = None,
        size: float | None = None,
    ) -> ClosedPosition:
        """Close a position on an external signal and fold it into the metrics.

        ``size`` closes part of the position; the default closes all of it.

        Raises:
            NoSuchPosition: nothing is open for ``market_id``
        """
        closed = self.ledger.close(
            market_id,
            exit_price,
            at=at or datetime.now(timezone.utc),
            fee_rate=self.simulator.fee_rate,
            size=size,
        )
        self.metrics.record(closed)
        self.journal.log_closed(closed)
        self.log.info(
            "position_closed",
            market_id=market_id,
            exit_price=exit_price,
            size=closed.position.size,
            pnl=closed.pnl,
            net_pnl=closed.net_pnl,
        )
        return closed
