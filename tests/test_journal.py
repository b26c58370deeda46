from datetime import datetime, timezone

import orjson

from copytrade.ledger.journal import NullJournal, TradeJournal
from copytrade.models import ClosedPosition, Fill, Position


def _fill(trade) -> Fill:
    return Fill(
        market_id=trade.market_id,
        side=trade.side,
        size=10.0,
        executed_price=0.51,
        reference_price=trade.reference_price,
        fee=0.0,
        cost=5.1,
        trade_id=trade.id,
    )


def test_records_one_json_object_per_line(workspace_tmp_path, make_trade) -> None:
    path = workspace_tmp_path / "trades.jsonl"
    trade = make_trade()
    with TradeJournal(path) as journal:
        journal.log_detected(trade)
        journal.log_executed(trade, _fill(trade))
        journal.log_failed(make_trade(), "INSUFFICIENT_BALANCE")

    lines = path.read_bytes().splitlines()
    assert len(lines) == 3
    records = [orjson.loads(line) for line in lines]
    assert set(records[0]) == {"timestamp", "trade", "executed", "success", "error"}
    assert records[1]["success"] is True
    assert records[1]["executed"]["executed_price"] == 0.51
    assert records[2]["error"] == "INSUFFICIENT_BALANCE"


def test_buffer_flushes_at_capacity(workspace_tmp_path, make_trade) -> None:
    path = workspace_tmp_path / "trades.jsonl"
    journal = TradeJournal(path, buffer_size=2)
    journal.log_detected(make_trade())
    assert not path.exists()
    journal.log_detected(make_trade())
    assert len(path.read_bytes().splitlines()) == 2
    assert journal.record_count == 2


def test_statistics(workspace_tmp_path, make_trade) -> None:
    journal = TradeJournal(workspace_tmp_path / "trades.jsonl")
    trade = make_trade()
    journal.log_detected(trade)
    journal.log_executed(trade, _fill(trade))
    journal.log_detected(make_trade())
    journal.log_failed(make_trade(), "ORDER_TIMED_OUT")

    stats = journal.statistics()
    assert stats.total_trades == 2
    assert stats.successful_trades == 1
    assert stats.failed_trades == 1
    assert stats.detected_trades == 2


def test_read_entries_skips_corrupt_lines(workspace_tmp_path, make_trade) -> None:
    path = workspace_tmp_path / "trades.jsonl"
    journal = TradeJournal(path)
    journal.log_detected(make_trade())
    journal.flush()
    with open(path, "ab") as f:
        f.write(b"{not json\n")
    assert len(journal.read_entries()) == 1


def test_explicit_timestamp_and_closed_record(workspace_tmp_path) -> None:
    at = datetime(2024, 1, 2, tzinfo=timezone.utc)
    closed = ClosedPosition(
        position=Position(market_id="m", side="BUY", entry_price=0.4, size=10.0),
        exit_price=0.5,
        pnl=1.0,
        closed_at=at,
    )
    journal = TradeJournal(workspace_tmp_path / "trades.jsonl")
    journal.log_closed(closed)
    entry = journal.read_entries()[0]
    assert entry["timestamp"] == at.isoformat()
    assert entry["closed"]["pnl"] == 1.0


def test_null_journal_is_inert(make_trade) -> None:
    with NullJournal() as journal:
        journal.log_detected(make_trade())
        journal.flush()
    assert journal.record_count == 0
