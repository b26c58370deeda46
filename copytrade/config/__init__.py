"""Configuration management module."""

from copytrade.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
