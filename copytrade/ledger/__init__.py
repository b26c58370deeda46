"""Position ledger and trade journal."""

from copytrade.ledger.journal import NullJournal, TradeJournal
from copytrade.ledger.ledger import Ledger, LedgerSnapshot

__all__ = ["Ledger", "LedgerSnapshot", "NullJournal", "TradeJournal"]
