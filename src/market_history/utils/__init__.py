"""Utility helpers."""

from market_history.utils.datetime import (
    ceil_to_grid,
    ensure_utc,
    floor_to_grid,
    from_epoch_millis,
    parse_iso8601,
    to_epoch_millis,
)

__all__ = ["ceil_to_grid", "ensure_utc", "floor_to_grid", "from_epoch_millis", "parse_iso8601", "to_epoch_millis"]
