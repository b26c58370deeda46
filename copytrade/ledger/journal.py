"""Append-only trade journal.

One JSON object per line with ``timestamp``, ``trade``, ``executed``,
``success`` and ``error``. Backtests stamp records with the simulated
trade time; live mode stamps wall-clock UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson

from copytrade.models import ClosedPosition, Fill, TradeEvent


@dataclass(frozen=True)
class JournalStatistics:
    total_trades: int
    successful_trades: int
    failed_trades: int
    detected_trades: int = 0


class TradeJournal:
    """Buffered JSON-lines writer for detected, executed and failed trades.

    Example:
        with TradeJournal("./data/trades.jsonl") as journal:
            journal.log_detected(trade)
            journal.log_executed(trade, fill)
    """

    def __init__(
        self,
        path: str | Path,
        buffer_size: int = 100,
    ) -> None:
        """Initialize the journal.

        Args:
            path: JSON-lines file to append to
            buffer_size: Number of records to buffer before auto-flush
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.buffer_size = buffer_size

        self._buffer: list[bytes] = []
        self._record_count = 0

    def log_detected(self, trade: TradeEvent, at: datetime | None = None) -> None:
        self._write(trade, at=at, success=False)

    def log_executed(self, trade: TradeEvent, fill: Fill, at: datetime | None = None) -> None:
        self._write(trade, at=at, executed=fill.to_dict(), success=True)

    def log_failed(self, trade: TradeEvent, error: str, at: datetime | None = None) -> None:
        self._write(trade, at=at, success=False, error=error)

    def log_closed(self, closed: ClosedPosition, at: datetime | None = None) -> None:
        record = {
            "timestamp": self._timestamp(at or closed.closed_at),
            "closed": closed.to_dict(),
        }
        self._append(orjson.dumps(record))

    def _write(
        self,
        trade: TradeEvent,
        at: datetime | None,
        success: bool,
        executed: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        record = {
            "timestamp": self._timestamp(at),
            "trade": trade.to_dict(),
            "executed": executed,
            "success": success,
            "error": error,
        }
        self._append(orjson.dumps(record))

    @staticmethod
    def _timestamp(at: datetime | None) -> str:
        return (at or datetime.now(timezone.utc)).isoformat()

    def _append(self, line: bytes) -> None:
        self._buffer.append(line)
        self._record_count += 1
        if len(self._buffer) >= self.buffer_size:
            self.flush()

    def flush(self) -> None:
        """Flush buffered records to disk."""
        if not self._buffer:
            return

        with open(self.path, "ab") as f:
            for line in self._buffer:
                f.write(line)
                f.write(b"\n")

        self._buffer.clear()

    def close(self) -> None:
        self.flush()

    def read_entries(self) -> list[dict[str, Any]]:
        """Read every trade record; unparseable lines are skipped."""
        self.flush()
        if not self.path.exists():
            return []
        entries: list[dict[str, Any]] = []
        with open(self.path, "rb") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(orjson.loads(line))
                except orjson.JSONDecodeError:
                    continue
        return entries

    def statistics(self) -> JournalStatistics:
        """Outcome counts over executed and failed records.

        Detection records carry neither an execution nor an error and are
        counted separately.
        """
        entries = [e for e in self.read_entries() if "trade" in e]
        successful = sum(1 for e in entries if e.get("success"))
        failed = sum(1 for e in entries if not e.get("success") and e.get("error"))
        return JournalStatistics(
            total_trades=successful + failed,
            successful_trades=successful,
            failed_trades=failed,
            detected_trades=len(entries) - successful - failed,
        )

    @property
    def record_count(self) -> int:
        """Total number of records written by this instance."""
        return self._record_count

    def __enter__(self) -> TradeJournal:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class NullJournal:
    """No-op journal for when trade logging is disabled."""

    def log_detected(self, trade: TradeEvent, at: datetime | None = None) -> None:
        pass

    def log_executed(self, trade: TradeEvent, fill: Fill, at: datetime | None = None) -> None:
        pass

    def log_failed(self, trade: TradeEvent, error: str, at: datetime | None = None) -> None:
        pass

    def log_closed(self, closed: ClosedPosition, at: datetime | None = None) -> None:
        pass

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass

    @property
    def record_count(self) -> int:
        return 0

    def __enter__(self) -> NullJournal:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        pass
