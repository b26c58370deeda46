"""Copy-trading replay and execution-simulation engine."""

__version__ = "0.1.0"
