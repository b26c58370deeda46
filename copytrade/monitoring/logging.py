"""Structured logging configuration.

Events are rendered as JSON lines on stdout. ERROR and above are also kept
in a rotating ``errors.log`` under ``storage.logs_path``. Every event carries
the run mode plus whatever is bound with ``bind_run_context``.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys

import structlog

from copytrade.config.settings import Settings

ERROR_LOG_NAME = "errors.log"


def configure_logging(settings: Settings) -> None:
    monitoring = settings.monitoring
    level = getattr(logging, monitoring.log_level, logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        force=True,
    )
    logs_path = settings.storage.logs_path
    if logs_path:
        log_dir = Path(logs_path)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / ERROR_LOG_NAME,
            maxBytes=monitoring.error_log_max_bytes,
            backupCount=monitoring.error_log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.ERROR)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(file_handler)
    # Selector and slow-callback chatter from the event loop under DEBUG.
    logging.getLogger("asyncio").setLevel(max(level, logging.WARNING))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(run_mode=settings.run.mode)


def bind_run_context(**values: object) -> None:
    """Attach ``values`` (e.g. ``run_id``) to every subsequent event."""
    structlog.contextvars.bind_contextvars(**values)
