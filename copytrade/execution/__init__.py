"""Live order execution: lifecycle tracking, placement and the copy engine."""

from copytrade.execution.executor import ExecutionVenue, OrderExecutor
from copytrade.execution.lifecycle import (
    Clock,
    OrderLifecycle,
    OrderResolution,
    OrderState,
    OrderTracker,
    RetryPolicy,
    SystemClock,
)
from copytrade.execution.live_engine import LiveCopyEngine, LiveExecution, worker_index

__all__ = [
    "Clock",
    "ExecutionVenue",
    "LiveCopyEngine",
    "LiveExecution",
    "OrderExecutor",
    "OrderLifecycle",
    "OrderResolution",
    "OrderState",
    "OrderTracker",
    "RetryPolicy",
    "SystemClock",
    "worker_index",
]
