"""Configuration subpackage."""

from market_history.config.settings import AppSettings, load_settings

__all__ = ["AppSettings", "load_settings"]
