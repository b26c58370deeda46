"""Order lifecycle tracking for live execution.

A submitted order is polled at a fixed interval until the venue reports a
terminal status or the confirmation deadline passes:

    SUBMITTED --FILLED-------------------------------> FILLED
    SUBMITTED --PARTIALLY_FILLED (after deadline)----> PARTIALLY_FILLED
    SUBMITTED --OPEN (after deadline), cancel sent---> TIMED_OUT
    SUBMITTED --CANCELLED----------------------------> CANCELLED
    SUBMITTED --transport retries exhausted----------> FAILED

PARTIALLY_FILLED and OPEN before the deadline keep the order SUBMITTED.
A remainder left by a partial fill is not cancelled.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, TypeVar

import structlog

from copytrade.config.settings import ExecutionConfig
from copytrade.errors import ExecutionFailed, OrderTimeout, TransportError
from copytrade.models import OrderIntent, OrderStatusReport

if TYPE_CHECKING:
    from copytrade.execution.executor import ExecutionVenue

T = TypeVar("T")


class OrderState(StrEnum):
    SUBMITTED = "SUBMITTED"
    FILLED = "FILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    CANCELLED = "CANCELLED"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset(
    {
        OrderState.FILLED,
        OrderState.PARTIALLY_FILLED,
        OrderState.CANCELLED,
        OrderState.TIMED_OUT,
        OrderState.FAILED,
    }
)


class Clock(Protocol):
    """Time source for deadlines and waits."""

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget with exponential backoff.

    Attributes:
        max_retries: Total attempts per operation
        initial_delay: Seconds before the second attempt
        max_delay: Upper bound on any single delay
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < self.initial_delay:
            raise ValueError("delays must satisfy 0 <= initial_delay <= max_delay")

    @classmethod
    def from_config(cls, config: ExecutionConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            initial_delay=config.retry_initial_delay_ms / 1000,
            max_delay=config.retry_max_delay_ms / 1000,
        )

    def delay(self, failures: int) -> float:
        """Backoff after the ``failures``-th consecutive failure (1-based)."""
        return min(self.initial_delay * 2 ** max(failures - 1, 0), self.max_delay)


@dataclass(frozen=True)
class OrderResolution:
    """Terminal record of one submitted order."""

    order_id: str
    intent: OrderIntent
    state: OrderState
    filled_size: float = 0.0
    avg_price: float | None = None
    polls: int = 0
    cancel_error: str | None = None
    error: str | None = None

    @property
    def has_fill(self) -> bool:
        return (
            self.state in (OrderState.FILLED, OrderState.PARTIALLY_FILLED)
            and self.filled_size > 0
        )


class OrderLifecycle:
    """State machine for a single submitted order.

    Time is passed in explicitly so the transition table can be driven
    without a real clock.
    """

    def __init__(
        self,
        order_id: str,
        intent: OrderIntent,
        submitted_at: float,
        timeout_sec: float,
    ) -> None:
        self.order_id = order_id
        self.intent = intent
        self.submitted_at = submitted_at
        self.deadline = submitted_at + timeout_sec
        self.state = OrderState.SUBMITTED
        self.filled_size = 0.0
        self.avg_price: float | None = None
        self.cancel_requested = False
        self.cancel_error: str | None = None
        self.error: str | None = None
        self.polls = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def on_poll(self, report: OrderStatusReport, now: float) -> OrderState:
        """Apply one status poll and return the resulting state.

        Raises:
            RuntimeError: If the lifecycle already reached a terminal state.
        """
        if self.is_terminal:
            raise RuntimeError(f"Order {self.order_id} already terminal: {self.state}")

        self.polls += 1
        if report.filled_size > 0:
            self.filled_size = report.filled_size
        if report.avg_price is not None:
            self.avg_price = report.avg_price
        expired = now >= self.deadline

        if report.status == "FILLED":
            if self.filled_size <= 0:
                self.filled_size = self.intent.size
            self.state = OrderState.FILLED
        elif report.status == "CANCELLED":
            self.state = OrderState.CANCELLED
        elif report.status == "PARTIALLY_FILLED":
            if expired:
                self.state = OrderState.PARTIALLY_FILLED
        elif report.status == "OPEN":
            if expired:
                self.cancel_requested = True
                self.state = OrderState.TIMED_OUT
        else:
            raise ValueError(f"Unknown order status: {report.status}")
        return self.state

    def fail(self, error: str) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Order {self.order_id} already terminal: {self.state}")
        self.error = error
        self.state = OrderState.FAILED

    def resolution(self) -> OrderResolution:
        if not self.is_terminal:
            raise RuntimeError(f"Order {self.order_id} is still {self.state}")
        return OrderResolution(
            order_id=self.order_id,
            intent=self.intent,
            state=self.state,
            filled_size=self.filled_size,
            avg_price=self.avg_price,
            polls=self.polls,
            cancel_error=self.cancel_error,
            error=self.error,
        )


async def call_with_timeout(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a venue call, surfacing a stall as an OrderTimeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise OrderTimeout(f"Venue call timed out after {timeout}s") from exc


class OrderTracker:
    """Polls the venue until an order lifecycle reaches a terminal state."""

    def __init__(
        self,
        venue: ExecutionVenue,
        clock: Clock | None = None,
        poll_interval: float = 0.5,
        retry: RetryPolicy | None = None,
        request_timeout: float = 10.0,
    ) -> None:
        self.venue = venue
        self.clock: Clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.retry = retry or RetryPolicy()
        self.request_timeout = request_timeout
        self.log = structlog.get_logger(__name__)

    async def track(self, lifecycle: OrderLifecycle) -> OrderResolution:
        """Poll until terminal and return the order's resolution.

        Raises:
            ExecutionFailed: Status polls failed ``max_retries`` times in a
                row. The lifecycle is left FAILED.
        """
        failures = 0
        while True:
            try:
                report = await call_with_timeout(
                    self.venue.get_order(lifecycle.order_id), self.request_timeout
                )
            except TransportError as exc:
                failures += 1
                self.log.warning(
                    "order_status_failed",
                    order_id=lifecycle.order_id,
                    attempt=failures,
                    max_retries=self.retry.max_retries,
                    error=str(exc),
                )
                if failures >= self.retry.max_retries:
                    lifecycle.fail(str(exc))
                    self.log.error(
                        "order_tracking_failed",
                        order_id=lifecycle.order_id,
                        market_id=lifecycle.intent.market_id,
                        attempts=failures,
                    )
                    raise ExecutionFailed(
                        f"Order {lifecycle.order_id} status unavailable after {failures} attempts",
                        order_id=lifecycle.order_id,
                        attempts=failures,
                    ) from exc
                await self.clock.sleep(self.retry.delay(failures))
                continue

            failures = 0
            lifecycle.on_poll(report, self.clock.monotonic())
            if lifecycle.cancel_requested:
                await self._cancel_order_safe(lifecycle)
            if lifecycle.is_terminal:
                resolution = lifecycle.resolution()
                self.log.info(
                    "order_resolved",
                    order_id=resolution.order_id,
                    market_id=resolution.intent.market_id,
                    state=resolution.state.value,
                    filled_size=resolution.filled_size,
                    avg_price=resolution.avg_price,
                    polls=resolution.polls,
                )
                return resolution
            await self.clock.sleep(self.poll_interval)

    async def _cancel_order_safe(self, lifecycle: OrderLifecycle) -> None:
        try:
            await call_with_timeout(self.venue.cancel(lifecycle.order_id), self.request_timeout)
        except TransportError as exc:
            lifecycle.cancel_error = str(exc)
            self.log.warning(
                "cancel_order_failed",
                order_id=lifecycle.order_id,
                market_id=lifecycle.intent.market_id,
                error=str(exc),
            )
