"""
Time-range utilities

Pure helpers for interval overlap, buffer expansion, slot enumeration and
exact conversion between a named timezone's wall-clock time and UTC instants.
Nothing in here performs I/O.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slotkeeper.core.exceptions import ValidationError


class Interval(NamedTuple):
    """Half-open span [start, end)"""
    start: datetime
    end: datetime


def overlaps(a: Interval, b: Interval) -> bool:
    """
    Half-open overlap test.

    `a` starts strictly before `b` ends and ends strictly after `b` starts,
    so touching intervals (a.end == b.start) do not overlap.
    """
    return a.start < b.end and a.end > b.start


def expand_by_buffer(interval: Interval, buffer: timedelta) -> Interval:
    """Widen an interval by `buffer` on both sides"""
    if buffer < timedelta(0):
        raise ValueError("Buffer must not be negative")
    return Interval(interval.start - buffer, interval.end + buffer)


class SlotSequence:
    """
    Lazy, restartable sequence of fixed-length slots inside a range.

    Every iteration starts again from `range_start`, advancing by
    `duration + buffer`; the sequence stops at the first slot whose end
    falls after `range_end`.
    """

    def __init__(
            self,
            range_start: datetime,
            range_end: datetime,
            duration: timedelta,
            buffer: timedelta = timedelta(0)
    ):
        if duration <= timedelta(0):
            raise ValueError("Slot duration must be positive")
        if buffer < timedelta(0):
            raise ValueError("Buffer must not be negative")
        self.range_start = range_start
        self.range_end = range_end
        self.duration = duration
        self.buffer = buffer

    def __iter__(self) -> Iterator[Interval]:
        step = self.duration + self.buffer
        slot_start = self.range_start
        while True:
            slot_end = slot_start + self.duration
            if slot_end > self.range_end:
                return
            yield Interval(slot_start, slot_end)
            slot_start = slot_start + step

    def __repr__(self) -> str:
        return (
            f"SlotSequence({self.range_start!r}, {self.range_end!r}, "
            f"duration={self.duration!r}, buffer={self.buffer!r})"
        )


def enumerate_slots(
        range_start: datetime,
        range_end: datetime,
        duration: timedelta,
        buffer: timedelta = timedelta(0)
) -> SlotSequence:
    return SlotSequence(range_start, range_end, duration, buffer)


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA timezone, rejecting unknown names"""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {name}") from e


def parse_hhmm(value: str) -> time:
    """Parse an HH:MM string into a time"""
    return datetime.strptime(value, "%H:%M").time()


def to_instant(local: datetime, tz: ZoneInfo) -> datetime:
    """
    Interpret a naive wall-clock datetime in `tz` and return the UTC instant.

    The offset is taken at that exact local time, so DST changes within a
    day shift the resulting instant instead of being skipped.
    """
    if local.tzinfo is not None:
        raise ValueError("Expected a naive wall-clock datetime")
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


def exists_locally(local: datetime, tz: ZoneInfo) -> bool:
    """False for wall-clock times skipped by a forward DST jump"""
    return to_instant(local, tz).astimezone(tz).replace(tzinfo=None) == local


def day_bounds(day: date, tz: ZoneInfo) -> Interval:
    """Local midnight of `day` to the next local midnight, as UTC instants"""
    start = to_instant(datetime.combine(day, time.min), tz)
    end = to_instant(datetime.combine(day + timedelta(days=1), time.min), tz)
    return Interval(start, end)


def local_date(instant: datetime, tz: ZoneInfo) -> date:
    """Calendar date of an absolute instant as seen in `tz`"""
    return ensure_aware(instant).astimezone(tz).date()


def ensure_aware(value: datetime, field: str = "datetime") -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{field} must carry an explicit timezone")
    return value
