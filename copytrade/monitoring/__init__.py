"""Monitoring utilities."""

from copytrade.monitoring.logging import bind_run_context, configure_logging

__all__ = ["bind_run_context", "configure_logging"]
