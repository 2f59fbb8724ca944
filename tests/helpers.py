"""Test doubles and ICS builders shared across test modules."""

import asyncio
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

from slotkeeper.core.exceptions import SyncError
from slotkeeper.schemas.calendar_events import NotificationEvent, SyncResult


class FixedClock:
    """Callable clock returning a settable instant"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeFeedFetcher:
    """Serves canned feeds by URL; exceptions registered for a URL are raised"""

    def __init__(self, feeds: Optional[Dict[str, Union[bytes, Exception]]] = None):
        self.feeds = dict(feeds or {})
        self.requested: List[str] = []

    async def fetch(self, url: str) -> bytes:
        self.requested.append(url)
        feed = self.feeds.get(url)
        if feed is None:
            raise SyncError(f"Failed to fetch feed {url}: HTTP 404")
        if isinstance(feed, Exception):
            raise feed
        return feed


class RecordingSink:
    """Notification sink that remembers what it was told"""

    def __init__(self, fail: bool = False):
        self.events: List[Tuple[NotificationEvent, object]] = []
        self.fail = fail

    def notify(self, event, booking, rule) -> None:
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.events.append((event, booking.id))


class InMemoryCalendarRepository:
    """Just enough of CalendarSourceRepository for the scheduler"""

    def __init__(self, *sources):
        self.sources = {source.id: source for source in sources}

    def put(self, source) -> None:
        self.sources[source.id] = source

    def remove(self, calendar_id) -> None:
        self.sources.pop(calendar_id, None)

    async def get(self, calendar_id):
        return self.sources.get(calendar_id)

    async def list_syncable(self):
        return [source for source in self.sources.values() if source.is_syncable]


class RecordingSyncService:
    """Sync service double counting calls and overlapping runs per calendar"""

    def __init__(self, failing: Iterable = (), delay: float = 0):
        self.failing = set(failing)
        self.delay = delay
        self.calls = defaultdict(int)
        self.active = defaultdict(int)
        self.max_active = defaultdict(int)

    async def sync_calendar(self, calendar_id):
        return await self._run(calendar_id)

    async def sync(self, source):
        return await self._run(source.id)

    async def _run(self, calendar_id):
        self.active[calendar_id] += 1
        self.max_active[calendar_id] = max(self.max_active[calendar_id], self.active[calendar_id])
        try:
            self.calls[calendar_id] += 1
            if self.delay:
                await asyncio.sleep(self.delay)
            if calendar_id in self.failing:
                raise SyncError("feed unavailable", calendar_id=calendar_id)
            return SyncResult(calendar_id=calendar_id, imported=1)
        finally:
            self.active[calendar_id] -= 1


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll `predicate` until it holds or fail after `timeout` seconds"""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def vevent(
        uid: Optional[str] = "event-1",
        start: Optional[str] = "20300304T090000Z",
        end: Optional[str] = "20300304T100000Z",
        summary: Optional[str] = "Busy",
        extra: Iterable[str] = ()
) -> str:
    lines = ["BEGIN:VEVENT"]
    if uid is not None:
        lines.append(f"UID:{uid}")
    if start is not None:
        lines.append(start if ":" in start else f"DTSTART:{start}")
    if end is not None:
        lines.append(end if ":" in end else f"DTEND:{end}")
    if summary is not None:
        lines.append(f"SUMMARY:{summary}")
    lines.extend(extra)
    lines.append("END:VEVENT")
    return "\r\n".join(lines)


def make_ics(*components: str, calendar_timezone: Optional[str] = None) -> bytes:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//slotkeeper//tests//EN",
    ]
    if calendar_timezone:
        lines.append(f"X-WR-TIMEZONE:{calendar_timezone}")
    lines.extend(components)
    lines.append("END:VCALENDAR")
    return ("\r\n".join(lines) + "\r\n").encode("utf-8")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# Monday and Tuesday, well after the fixed test clock
MONDAY = date(2030, 3, 4)
TUESDAY = date(2030, 3, 5)
