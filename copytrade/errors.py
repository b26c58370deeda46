"""Exception hierarchy for sizing, simulation, ledger and execution failures."""

from __future__ import annotations


class CopyTradeError(Exception):
    """Base class for all engine errors."""


class ConfigError(CopyTradeError):
    """Configuration is contradictory or out of range."""


class SizingError(CopyTradeError):
    """A trade could not be sized."""


class BelowMinimum(SizingError):
    """Sized trade falls below the configured floor."""

    def __init__(self, size: float, minimum: float) -> None:
        super().__init__(f"Sized trade {size} is below minimum {minimum}")
        self.size = size
        self.minimum = minimum


class SimulationError(CopyTradeError):
    """A fill could not be simulated."""


class InvalidModelParameter(SimulationError):
    pass


class InvalidSize(SimulationError):
    pass


class InsufficientBalance(SimulationError):
    """A buy costs more than the available balance."""

    def __init__(self, required: float, available: float) -> None:
        super().__init__(f"Insufficient balance: required {required}, available {available}")
        self.required = required
        self.available = available


class PriceOutOfBounds(SimulationError):
    pass


class LedgerError(CopyTradeError):
    pass


class PositionAlreadyOpen(LedgerError):
    def __init__(self, market_id: str) -> None:
        super().__init__(f"Position already open: {market_id}")
        self.market_id = market_id


class NoSuchPosition(LedgerError):
    def __init__(self, market_id: str) -> None:
        super().__init__(f"Position not found: {market_id}")
        self.market_id = market_id


class ExecutionError(CopyTradeError):
    pass


class TransportError(ExecutionError):
    """The venue could not be reached or rejected the request."""


class ExecutionFailed(ExecutionError):
    """Retry budget exhausted for a single order."""

    def __init__(self, message: str, order_id: str | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.order_id = order_id
        self.attempts = attempts


class OrderTimeout(TransportError):
    """A venue request did not answer within its timeout."""


def error_code(exc: BaseException) -> str:
    """UPPER_SNAKE code for an exception class, e.g. ``INSUFFICIENT_BALANCE``."""
    name = type(exc).__name__
    return "".join(f"_{c}" if c.isupper() and i else c for i, c in enumerate(name)).upper()
