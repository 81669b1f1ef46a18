"""Utility functions."""

from app.utils.time import (
    as_utc,
    get_zone,
    local_day_bounds,
    sunday_based_weekday,
    utc_now,
)

__all__ = [
    "utc_now",
    "as_utc",
    "get_zone",
    "local_day_bounds",
    "sunday_based_weekday",
]
