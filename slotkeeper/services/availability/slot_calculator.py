# slotkeeper/services/availability/slot_calculator.py
"""Free-slot arithmetic for a single day. No I/O."""
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from slotkeeper.schemas.calendar_events import TimeRange, TimeSlot
from slotkeeper.utils.time_ranges import (
    Interval,
    enumerate_slots,
    exists_locally,
    expand_by_buffer,
    overlaps,
    parse_hhmm,
    to_instant,
)


def compute_free_slots(
        day: date,
        tz: ZoneInfo,
        time_ranges: Sequence[TimeRange],
        duration: timedelta,
        buffer: timedelta,
        busy: Iterable[Interval],
        now: Optional[datetime] = None
) -> List[TimeSlot]:
    """
    Free slots of `day`, in configured range order.

    Candidates are laid out in wall-clock time of `tz` and converted one by
    one, so a DST change inside a range shifts the instants instead of
    breaking the grid. A candidate is dropped when its start falls in a
    spring-forward gap, when it has already ended, when the conversion
    collapses it (end <= start), or when its buffered interval overlaps any
    busy interval. A gap start would land on the same instant as the real
    wall-clock time after the jump.
    """
    busy = list(busy)
    slots: List[TimeSlot] = []

    for time_range in time_ranges:
        local_start = datetime.combine(day, parse_hhmm(time_range.start))
        local_end = datetime.combine(day, parse_hhmm(time_range.end))

        for candidate in enumerate_slots(local_start, local_end, duration, buffer):
            if not exists_locally(candidate.start, tz):
                continue
            start = to_instant(candidate.start, tz)
            end = to_instant(candidate.end, tz)
            if end <= start:
                continue
            if now is not None and end <= now:
                continue

            blocked = expand_by_buffer(Interval(start, end), buffer)
            if any(overlaps(blocked, interval) for interval in busy):
                continue

            slots.append(TimeSlot(start=start, end=end))

    return slots


def apply_daily_cap(slots: List[TimeSlot], cap: Optional[int], existing_count: int) -> List[TimeSlot]:
    """Trim slots so existing plus offered bookings never exceed the daily cap"""
    if cap is None:
        return slots
    remaining = cap - existing_count
    if remaining <= 0:
        return []
    return slots[:remaining]
