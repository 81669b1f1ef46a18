"""Half-open interval arithmetic for conflict detection.

Intervals are [start, end). Two intervals overlap when they share an instant,
so back-to-back appointments (one ends exactly when the next starts) do not
conflict.
"""

from collections.abc import Iterable
from datetime import datetime

from app.booking.slots import Slot


def intervals_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Check whether [a_start, a_end) and [b_start, b_end) overlap.

    Examples:
        >>> from datetime import datetime
        >>> nine, ten, eleven = (datetime(2030, 1, 7, h) for h in (9, 10, 11))
        >>> intervals_overlap(nine, ten, ten, eleven)
        False
        >>> intervals_overlap(nine, eleven, ten, eleven)
        True
    """
    return a_start < b_end and b_start < a_end


def overlaps_any(
    start: datetime,
    end: datetime,
    busy: Iterable[tuple[datetime, datetime]],
) -> bool:
    """Check whether [start, end) overlaps any busy interval."""
    return any(intervals_overlap(start, end, b_start, b_end) for b_start, b_end in busy)


def filter_free(
    slots: Iterable[Slot],
    busy: Iterable[tuple[datetime, datetime]],
) -> list[Slot]:
    """Keep only slots that do not overlap any busy interval."""
    busy = list(busy)
    return [slot for slot in slots if not overlaps_any(slot.start, slot.end, busy)]
