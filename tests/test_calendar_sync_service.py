"""Tests for CalendarSyncService."""

from datetime import date
from uuid import uuid4

import pytest

from slotkeeper.core.exceptions import NotFoundError, SyncError
from slotkeeper.schemas.calendar_events import CalendarSourceKind, ParsedEvent
from slotkeeper.services.calendar.calendar_sync_service import event_key, normalize_all_day
from tests.helpers import make_ics, utc, vevent

FEED_URL = "https://calendar.example.com/team.ics"


def three_events() -> bytes:
    return make_ics(
        vevent(uid="e1", start="20300304T090000Z", end="20300304T100000Z", summary="One"),
        vevent(uid="e2", start="20300304T110000Z", end="20300304T120000Z", summary="Two"),
        vevent(uid="e3", start="20300305T090000Z", end="20300305T093000Z", summary="Three"),
    )


@pytest.fixture
async def url_calendar(make_calendar, fetcher):
    fetcher.feeds[FEED_URL] = three_events()
    return await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)


class TestSync:
    @pytest.mark.asyncio
    async def test_initial_sync_imports_events(self, sync_service, event_repository, calendar_repository, url_calendar, clock):
        result = await sync_service.sync(url_calendar)

        assert result.imported == 3
        assert result.deleted == 0
        assert await event_repository.list_uids(url_calendar.id) == {"e1", "e2", "e3"}

        stored = await calendar_repository.get(url_calendar.id)
        assert stored.last_synced_at == clock.now

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, sync_service, event_repository, url_calendar):
        """Should update in place, keeping row identities, when the feed is unchanged."""
        await sync_service.sync(url_calendar)
        before = {event.uid: event.id for event in await event_repository.list_by_calendar(url_calendar.id)}

        result = await sync_service.sync(url_calendar)

        after = {event.uid: event.id for event in await event_repository.list_by_calendar(url_calendar.id)}
        assert result.imported == 3
        assert result.deleted == 0
        assert before == after

    @pytest.mark.asyncio
    async def test_removed_event_is_deleted(self, sync_service, event_repository, url_calendar, fetcher):
        await sync_service.sync(url_calendar)
        fetcher.feeds[FEED_URL] = make_ics(
            vevent(uid="e1", start="20300304T090000Z", end="20300304T100000Z", summary="One"),
            vevent(uid="e3", start="20300305T090000Z", end="20300305T093000Z", summary="Three"),
        )

        result = await sync_service.sync(url_calendar)

        assert result.deleted == 1
        assert result.imported == 2
        assert await event_repository.list_uids(url_calendar.id) == {"e1", "e3"}

    @pytest.mark.asyncio
    async def test_changed_event_is_updated(self, sync_service, event_repository, url_calendar, fetcher):
        await sync_service.sync(url_calendar)
        fetcher.feeds[FEED_URL] = make_ics(
            vevent(uid="e1", start="20300304T130000Z", end="20300304T140000Z", summary="Moved"),
        )

        await sync_service.sync(url_calendar)

        events = await event_repository.list_by_calendar(url_calendar.id)
        assert len(events) == 1
        assert events[0].title == "Moved"
        assert events[0].start_time == utc(2030, 3, 4, 13)

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_events_untouched(self, sync_service, event_repository, calendar_repository, url_calendar, fetcher, clock):
        await sync_service.sync(url_calendar)
        first_sync = clock.now
        fetcher.feeds[FEED_URL] = SyncError("Failed to fetch feed: HTTP 500")
        clock.now = utc(2030, 1, 2)

        with pytest.raises(SyncError) as excinfo:
            await sync_service.sync(url_calendar)

        assert excinfo.value.calendar_id == url_calendar.id
        assert await event_repository.list_uids(url_calendar.id) == {"e1", "e2", "e3"}
        stored = await calendar_repository.get(url_calendar.id)
        assert stored.last_synced_at == first_sync

    @pytest.mark.asyncio
    async def test_unparseable_feed_leaves_events_untouched(self, sync_service, event_repository, url_calendar, fetcher):
        await sync_service.sync(url_calendar)
        fetcher.feeds[FEED_URL] = b"<html>maintenance</html>"

        with pytest.raises(SyncError):
            await sync_service.sync(url_calendar)

        assert len(await event_repository.list_uids(url_calendar.id)) == 3

    @pytest.mark.asyncio
    async def test_file_source_syncs_stored_payload(self, sync_service, event_repository, make_calendar):
        source = await make_calendar(CalendarSourceKind.FILE, source_payload=three_events().decode())

        result = await sync_service.sync(source)

        assert result.imported == 3
        assert len(await event_repository.list_uids(source.id)) == 3

    @pytest.mark.asyncio
    async def test_file_source_without_payload_fails(self, sync_service, make_calendar):
        source = await make_calendar(CalendarSourceKind.FILE)
        with pytest.raises(SyncError):
            await sync_service.sync(source)

    @pytest.mark.asyncio
    async def test_manual_source_is_a_no_op(self, sync_service, calendar_repository, make_calendar, fetcher):
        source = await make_calendar(CalendarSourceKind.MANUAL)

        result = await sync_service.sync(source)

        assert (result.imported, result.deleted) == (0, 0)
        assert fetcher.requested == []
        assert (await calendar_repository.get(source.id)).last_synced_at is None

    @pytest.mark.asyncio
    async def test_sync_calendar_unknown_id(self, sync_service):
        with pytest.raises(NotFoundError):
            await sync_service.sync_calendar(uuid4())

    @pytest.mark.asyncio
    async def test_sync_calendar_by_id(self, sync_service, url_calendar):
        result = await sync_service.sync_calendar(url_calendar.id)
        assert result.calendar_id == url_calendar.id
        assert result.imported == 3


class TestEventMapping:
    @pytest.mark.asyncio
    async def test_all_day_event_normalised(self, sync_service, event_repository, make_calendar, fetcher):
        """Should cover 00:00:00 to 23:59:59 of the last day in the feed's timezone."""
        fetcher.feeds[FEED_URL] = make_ics(
            vevent(uid="holiday", start="DTSTART;VALUE=DATE:20300304", end="DTEND;VALUE=DATE:20300307"),
            calendar_timezone="Europe/Berlin",
        )
        source = await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)

        await sync_service.sync(source)

        event = (await event_repository.list_by_calendar(source.id))[0]
        assert event.is_all_day is True
        assert event.timezone == "Europe/Berlin"
        assert event.start_time == utc(2030, 3, 3, 23, 0, 0)
        assert event.end_time == utc(2030, 3, 6, 22, 59, 59)

    @pytest.mark.asyncio
    async def test_missing_title_defaults(self, sync_service, event_repository, make_calendar, fetcher):
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="anon", summary=None))
        source = await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)

        await sync_service.sync(source)

        event = (await event_repository.list_by_calendar(source.id))[0]
        assert event.title == "Untitled Event"

    @pytest.mark.asyncio
    async def test_long_summary_stored_intact(self, sync_service, event_repository, make_calendar, fetcher):
        summary = "Quarterly planning " + "x" * 600
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="long", summary=summary))
        source = await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)

        await sync_service.sync(source)

        event = (await event_repository.list_by_calendar(source.id))[0]
        assert event.title == summary

    @pytest.mark.asyncio
    async def test_long_uid_fits_column_and_stays_stable(self, sync_service, event_repository, make_calendar, fetcher):
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="u" * 700))
        source = await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)

        await sync_service.sync(source)
        first = await event_repository.list_uids(source.id)
        result = await sync_service.sync(source)

        assert first == await event_repository.list_uids(source.id)
        assert all(len(uid) <= 512 for uid in first)
        assert result.deleted == 0

    @pytest.mark.asyncio
    async def test_events_without_uid_churn(self, sync_service, event_repository, make_calendar, fetcher):
        """Should give UID-less events a fresh key on every sync."""
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid=None))
        source = await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)

        await sync_service.sync(source)
        first = await event_repository.list_uids(source.id)
        result = await sync_service.sync(source)
        second = await event_repository.list_uids(source.id)

        assert len(first) == len(second) == 1
        assert first != second
        assert next(iter(second)).startswith("generated-")
        assert (result.imported, result.deleted) == (1, 1)

    @pytest.mark.asyncio
    async def test_duplicate_uids_last_wins(self, sync_service, event_repository, make_calendar, fetcher):
        fetcher.feeds[FEED_URL] = make_ics(
            vevent(uid="dup", summary="First"),
            vevent(uid="dup", summary="Second"),
        )
        source = await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)

        result = await sync_service.sync(source)

        events = await event_repository.list_by_calendar(source.id)
        assert result.imported == 1
        assert [event.title for event in events] == ["Second"]

    @pytest.mark.asyncio
    async def test_recurrence_instances_stored_separately(self, sync_service, event_repository, make_calendar, fetcher):
        fetcher.feeds[FEED_URL] = make_ics(
            vevent(uid="weekly", extra=["RRULE:FREQ=WEEKLY;BYDAY=MO"]),
            vevent(
                uid="weekly",
                start="20300311T100000Z",
                end="20300311T110000Z",
                extra=["RECURRENCE-ID:20300311T090000Z"],
            ),
        )
        source = await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)

        await sync_service.sync(source)

        uids = await event_repository.list_uids(source.id)
        assert uids == {"weekly", "weekly#2030-03-11T09:00:00+00:00"}

    @pytest.mark.asyncio
    async def test_events_without_start_skipped(self, sync_service, event_repository, make_calendar, fetcher):
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="broken", start=None), vevent(uid="fine"))
        source = await make_calendar(CalendarSourceKind.URL, source_url=FEED_URL)

        result = await sync_service.sync(source)

        assert result.imported == 1
        assert await event_repository.list_uids(source.id) == {"fine"}


class TestHelpers:
    def test_event_key_prefers_provider_uid(self):
        assert event_key(ParsedEvent(uid="abc")) == "abc"

    def test_event_key_generates_when_missing(self):
        assert event_key(ParsedEvent()).startswith("generated-")
        assert event_key(ParsedEvent()) != event_key(ParsedEvent())

    def test_event_key_digests_long_uid(self):
        key = event_key(ParsedEvent(uid="a" * 600))
        other = event_key(ParsedEvent(uid="a" * 599 + "b"))
        assert len(key) == 512
        assert key.startswith("a" * 400)
        assert key != other

    def test_single_day_all_day_in_utc(self):
        start, end = normalize_all_day(date(2030, 3, 4), date(2030, 3, 5), "UTC")
        assert start == utc(2030, 3, 4, 0, 0, 0)
        assert end == utc(2030, 3, 4, 23, 59, 59)

    def test_all_day_without_end_covers_one_day(self):
        start, end = normalize_all_day(date(2030, 3, 4), None, "UTC")
        assert end == utc(2030, 3, 4, 23, 59, 59)
