"""Slot generation from weekly availability windows.

A window [start, end) with a slot length of N minutes yields contiguous
N-minute slots starting at ``start``. A trailing piece shorter than N is
dropped, never emitted as a partial slot.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


@dataclass(frozen=True, order=True)
class Slot:
    """Candidate bookable window [start, end)."""

    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def to_utc(self) -> "Slot":
        return Slot(self.start.astimezone(timezone.utc), self.end.astimezone(timezone.utc))


@dataclass(frozen=True)
class Window:
    """Wall-clock availability window for one day."""

    start_time: time
    end_time: time
    slot_duration_minutes: int


def partition_window(
    day: date,
    window: Window,
    tz: ZoneInfo,
) -> list[Slot]:
    """Cut one day's window into whole slots.

    Args:
        day: Local calendar date
        window: Wall-clock window and slot length
        tz: Zone the wall-clock times belong to

    Returns:
        Slots in ascending start order, each exactly the slot length long
    """
    if window.slot_duration_minutes <= 0 or window.start_time >= window.end_time:
        return []

    step = timedelta(minutes=window.slot_duration_minutes)
    window_start = datetime.combine(day, window.start_time, tzinfo=tz)
    window_end = datetime.combine(day, window.end_time, tzinfo=tz)

    slots = []
    # Step in UTC so a DST change inside the window does not stretch a slot
    current = window_start.astimezone(timezone.utc)
    limit = window_end.astimezone(timezone.utc)
    while current + step <= limit:
        slots.append(Slot(current.astimezone(tz), (current + step).astimezone(tz)))
        current += step

    return slots


def generate_slots(
    day: date,
    windows: Iterable[Window],
    tz: ZoneInfo,
) -> list[Slot]:
    """Generate the ordered, pairwise-disjoint slots for a day.

    When two windows overlap, a slot that overlaps one already taken is
    skipped so the result never double-counts time.
    """
    candidates: list[Slot] = []
    for window in windows:
        candidates.extend(partition_window(day, window, tz))

    candidates.sort(key=lambda s: (s.start, s.end))

    result: list[Slot] = []
    for slot in candidates:
        if result and slot.start < result[-1].end:
            continue
        result.append(slot)

    return result
