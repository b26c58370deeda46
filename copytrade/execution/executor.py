"""Order placement against an execution venue."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol
from uuid import uuid4

import structlog

from copytrade.config.settings import ExecutionConfig
from copytrade.errors import ExecutionFailed, TransportError
from copytrade.execution.lifecycle import (
    Clock,
    OrderLifecycle,
    OrderResolution,
    OrderTracker,
    RetryPolicy,
    SystemClock,
    call_with_timeout,
)
from copytrade.models import OrderIntent, OrderStatusReport, OrderType, Side


class ExecutionVenue(Protocol):
    """Order endpoint of a trading venue.

    Implementations raise TransportError for network or venue-side failures.
    """

    async def submit(self, intent: OrderIntent) -> str: ...

    async def get_order(self, order_id: str) -> OrderStatusReport: ...

    async def cancel(self, order_id: str) -> None: ...


def client_order_id(market_id: str, side: Side) -> str:
    nonce = uuid4().hex[:12]
    return f"C_{market_id[:16]}_{side[0]}_{nonce}"[:40]


class OrderExecutor:
    """Places orders with retry and follows them to a resolution.

    Example:
        executor = OrderExecutor.from_config(venue, settings.execution)
        resolution = await executor.execute(intent)
    """

    def __init__(
        self,
        venue: ExecutionVenue,
        clock: Clock | None = None,
        retry: RetryPolicy | None = None,
        poll_interval: float = 0.5,
        timeout_sec: float = 30.0,
        request_timeout: float = 10.0,
        order_type: OrderType = "FOK",
        gtd_duration_seconds: int = 300,
    ) -> None:
        self.venue = venue
        self.order_type = order_type
        self.gtd_duration_seconds = gtd_duration_seconds
        self.clock: Clock = clock or SystemClock()
        self.retry = retry or RetryPolicy()
        self.timeout_sec = timeout_sec
        self.request_timeout = request_timeout
        self.tracker = OrderTracker(
            venue,
            clock=self.clock,
            poll_interval=poll_interval,
            retry=self.retry,
            request_timeout=request_timeout,
        )
        self.log = structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        venue: ExecutionVenue,
        config: ExecutionConfig,
        clock: Clock | None = None,
    ) -> OrderExecutor:
        return cls(
            venue,
            clock=clock,
            retry=RetryPolicy.from_config(config),
            poll_interval=config.order_poll_interval_ms / 1000,
            timeout_sec=config.order_confirmation_timeout_ms / 1000,
            order_type=config.order_type,
            gtd_duration_seconds=config.gtd_duration_seconds,
        )

    def build_intent(
        self,
        market_id: str,
        side: Side,
        size: float,
        limit_price: float,
        trade_id: str | None = None,
    ) -> OrderIntent:
        """Order intent in the configured order type, with a fresh client id."""
        expires_at = None
        if self.order_type == "GTD":
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.gtd_duration_seconds)
        return OrderIntent(
            market_id=market_id,
            side=side,
            size=size,
            limit_price=limit_price,
            client_order_id=client_order_id(market_id, side),
            trade_id=trade_id,
            order_type=self.order_type,
            expires_at=expires_at,
        )

    async def submit(self, intent: OrderIntent) -> OrderLifecycle:
        """Place ``intent`` and start its lifecycle clock.

        Raises:
            ExecutionFailed: Placement failed ``max_retries`` times.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                order_id = await call_with_timeout(
                    self.venue.submit(intent), self.request_timeout
                )
            except TransportError as exc:
                if attempts >= self.retry.max_retries:
                    self.log.error(
                        "order_submit_failed",
                        market_id=intent.market_id,
                        client_order_id=intent.client_order_id,
                        attempts=attempts,
                        error=str(exc),
                    )
                    raise ExecutionFailed(
                        f"Failed to place order after {attempts} attempts: {exc}",
                        attempts=attempts,
                    ) from exc
                self.log.warning(
                    "order_submit_retrying",
                    market_id=intent.market_id,
                    attempt=attempts,
                    max_retries=self.retry.max_retries,
                    error=str(exc),
                )
                await self.clock.sleep(self.retry.delay(attempts))
                continue

            self.log.info(
                "order_placed",
                order_id=order_id,
                market_id=intent.market_id,
                side=intent.side,
                size=intent.size,
                limit_price=intent.limit_price,
                order_type=intent.order_type,
                trade_id=intent.trade_id,
            )
            return OrderLifecycle(
                order_id=order_id,
                intent=intent,
                submitted_at=self.clock.monotonic(),
                timeout_sec=self.timeout_sec,
            )

    async def execute(self, intent: OrderIntent) -> OrderResolution:
        """Submit and track an order to its terminal state."""
        lifecycle = await self.submit(intent)
        return await self.tracker.track(lifecycle)
