# slotkeeper/services/calendar/calendar_sync_service.py
import asyncio
import hashlib
import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

from slotkeeper.core.exceptions import NotFoundError, SyncError
from slotkeeper.models import CalendarSource, Event
from slotkeeper.repositories.base import CalendarSourceRepository, EventRepository
from slotkeeper.schemas.calendar_events import CalendarSourceKind, ParsedEvent, SyncResult
from slotkeeper.services.calendar.feed_fetcher import FeedFetcher
from slotkeeper.services.calendar.ics_parser import FeedParser
from slotkeeper.utils.time_ranges import resolve_timezone, to_instant

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "Untitled Event"
GENERATED_UID_PREFIX = "generated-"
# Matches the events.uid column
UID_MAX_LENGTH = 512


def event_key(parsed: ParsedEvent) -> str:
    """
    Natural key of a parsed event within its calendar.

    Events without a provider UID get a fresh random key on every sync, so
    they are re-created each time. Provider-supplied recurrence instances
    share their master's UID and are told apart by RECURRENCE-ID. Keys longer
    than the column keep their prefix and end in a digest of the full value.
    """
    if not parsed.uid:
        return f"{GENERATED_UID_PREFIX}{uuid.uuid4()}"
    key = parsed.uid
    if parsed.recurrence_id is not None:
        key = f"{key}#{parsed.recurrence_id.astimezone(timezone.utc).isoformat()}"
    if len(key) > UID_MAX_LENGTH:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        key = f"{key[:UID_MAX_LENGTH - len(digest) - 1]}#{digest}"
    return key


def normalize_all_day(start_day: date, end_day: Optional[date], tz_name: str) -> Tuple[datetime, datetime]:
    """
    Span an all-day event over [00:00:00, 23:59:59] local time in its own zone.

    DTEND of an all-day event is exclusive, so the last covered day is the one
    before it.
    """
    tz = resolve_timezone(tz_name)
    last_day = start_day
    if end_day is not None and end_day > start_day:
        last_day = end_day - timedelta(days=1)
    start = to_instant(datetime.combine(start_day, time(0, 0, 0)), tz)
    end = to_instant(datetime.combine(last_day, time(23, 59, 59)), tz)
    return start, end


class CalendarSyncService:
    """Reconciles stored events of one calendar against its external feed"""

    def __init__(
            self,
            calendar_repository: CalendarSourceRepository,
            event_repository: EventRepository,
            fetcher: FeedFetcher,
            parser: FeedParser,
            clock: Optional[Callable[[], datetime]] = None
    ):
        self.calendar_repository = calendar_repository
        self.event_repository = event_repository
        self.fetcher = fetcher
        self.parser = parser
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def sync_calendar(self, calendar_id: UUID) -> SyncResult:
        """Load a calendar source by id and sync it"""
        source = await self.calendar_repository.get(calendar_id)
        if source is None:
            raise NotFoundError(f"Calendar not found: {calendar_id}")
        return await self.sync(source)

    async def sync(self, source: CalendarSource) -> SyncResult:
        """
        Sync one calendar source.

        Fetch or parse failures raise SyncError before anything is written,
        so stored events and last_synced_at stay as they were. Upserts,
        deletions and the last_synced_at stamp are committed together.
        """
        raw = await self._resolve_feed(source)
        if raw is None:
            logger.debug(f"Calendar {source.id} is manual, nothing to sync")
            return SyncResult(calendar_id=source.id)

        try:
            parsed_events = await asyncio.to_thread(self.parser.parse, raw)
        except SyncError as e:
            e.calendar_id = source.id
            raise

        incoming = self._build_events(source.id, parsed_events)
        existing_uids = await self.event_repository.list_uids(source.id)
        stale_uids = existing_uids - set(incoming)

        synced_at = self._clock()
        await self.event_repository.apply_sync_batch(
            source.id, list(incoming.values()), stale_uids, synced_at
        )
        source.last_synced_at = synced_at

        logger.info(
            f"Synced calendar {source.name!r} ({source.id}): "
            f"{len(incoming)} imported, {len(stale_uids)} deleted"
        )
        return SyncResult(calendar_id=source.id, imported=len(incoming), deleted=len(stale_uids))

    async def _resolve_feed(self, source: CalendarSource) -> Optional[bytes]:
        kind = source.kind
        if kind == CalendarSourceKind.MANUAL:
            return None
        elif kind == CalendarSourceKind.URL:
            if not source.source_url:
                raise SyncError("Calendar URL is missing", calendar_id=source.id)
            logger.info(f"Fetching calendar {source.id} from {source.source_url}")
            try:
                return await self.fetcher.fetch(source.source_url)
            except SyncError as e:
                e.calendar_id = source.id
                raise
        elif kind == CalendarSourceKind.FILE:
            if not source.source_payload:
                raise SyncError("Calendar file payload is missing", calendar_id=source.id)
            return source.source_payload.encode("utf-8")
        else:
            raise SyncError(f"Unsupported calendar source kind: {kind}", calendar_id=source.id)

    def _build_events(self, calendar_id: UUID, parsed_events: List[ParsedEvent]) -> Dict[str, Event]:
        """Map parsed events to Event rows keyed by uid; later duplicates win"""
        events: Dict[str, Event] = {}
        for parsed in parsed_events:
            if parsed.start is None:
                continue

            if parsed.all_day:
                start_day = parsed.start if not isinstance(parsed.start, datetime) else parsed.start.date()
                end_day = parsed.end
                if isinstance(end_day, datetime):
                    end_day = end_day.date()
                start, end = normalize_all_day(start_day, end_day, parsed.timezone)
            else:
                start = parsed.start.astimezone(timezone.utc)
                end = parsed.end.astimezone(timezone.utc) if isinstance(parsed.end, datetime) else start
                if end < start:
                    logger.warning(f"Event {parsed.uid} ends before it starts, clamping end to start")
                    end = start

            key = event_key(parsed)
            events[key] = Event(
                calendar_id=calendar_id,
                uid=key,
                title=parsed.title or UNTITLED_EVENT,
                description=parsed.description,
                location=parsed.location,
                start_time=start,
                end_time=end,
                timezone=parsed.timezone,
                is_all_day=parsed.all_day,
                recurrence_rule=parsed.recurrence_rule,
            )
        return events
