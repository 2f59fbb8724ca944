"""Tests for CalendarSourceService."""

from uuid import uuid4

import pytest

from slotkeeper.core.exceptions import NotFoundError, SyncError, ValidationError
from slotkeeper.schemas.calendar_events import CalendarSourceKind
from tests.helpers import make_ics, utc, vevent

FEED_URL = "https://calendar.example.com/personal.ics"


class TestCreateSources:
    @pytest.mark.asyncio
    async def test_url_source_synced_on_creation(self, source_service, event_repository, fetcher, owner_id):
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="a"), vevent(uid="b"))

        source = await source_service.create_url_source(owner_id, "  Personal  ", FEED_URL)

        assert source.source_kind == CalendarSourceKind.URL.value
        assert source.name == "Personal"
        assert source.last_synced_at is not None
        assert await event_repository.list_uids(source.id) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_webcal_url_accepted(self, source_service, fetcher, owner_id):
        fetcher.feeds["webcal://calendar.example.com/a.ics"] = make_ics(vevent())
        source = await source_service.create_url_source(owner_id, "Shared", "webcal://calendar.example.com/a.ics")
        assert source.source_url.startswith("webcal://")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "ftp://calendar.example.com/a.ics", "not a url", "https://"])
    async def test_invalid_url_rejected(self, source_service, calendar_repository, owner_id, url):
        with pytest.raises(ValidationError):
            await source_service.create_url_source(owner_id, "Broken", url)
        assert await calendar_repository.list_by_owner(owner_id) == []

    @pytest.mark.asyncio
    async def test_failed_first_sync_keeps_source(self, source_service, calendar_repository, fetcher, owner_id):
        """Should register the calendar even when the feed is down so the scheduler can retry."""
        fetcher.feeds[FEED_URL] = SyncError("Failed to fetch feed: HTTP 503")

        source = await source_service.create_url_source(owner_id, "Flaky", FEED_URL)

        stored = await calendar_repository.get(source.id)
        assert stored is not None
        assert stored.last_synced_at is None

    @pytest.mark.asyncio
    async def test_file_source_imports_payload(self, source_service, event_repository, owner_id):
        payload = make_ics(vevent(uid="upload-1", start="20300304T120000Z", end="20300304T130000Z"))

        source = await source_service.create_file_source(owner_id, "Upload", payload)

        events = await event_repository.list_by_calendar(source.id)
        assert source.source_kind == CalendarSourceKind.FILE.value
        assert [event.uid for event in events] == ["upload-1"]
        assert events[0].start_time == utc(2030, 3, 4, 12)

    @pytest.mark.asyncio
    async def test_empty_file_rejected(self, source_service, owner_id):
        with pytest.raises(ValidationError):
            await source_service.create_file_source(owner_id, "Empty", "   ")

    @pytest.mark.asyncio
    async def test_manual_source_not_synced(self, source_service, fetcher, owner_id):
        source = await source_service.create_manual_source(owner_id, "Manual")

        assert source.source_kind == CalendarSourceKind.MANUAL.value
        assert source.is_syncable is False
        assert fetcher.requested == []

    @pytest.mark.asyncio
    async def test_name_required(self, source_service, owner_id):
        with pytest.raises(ValidationError):
            await source_service.create_manual_source(owner_id, "   ")


class TestManageSources:
    @pytest.mark.asyncio
    async def test_list_sources_per_owner(self, source_service, owner_id):
        await source_service.create_manual_source(owner_id, "One")
        await source_service.create_manual_source(owner_id, "Two")
        await source_service.create_manual_source(uuid4(), "Someone else")

        sources = await source_service.list_sources(owner_id)

        assert sorted(source.name for source in sources) == ["One", "Two"]

    @pytest.mark.asyncio
    async def test_delete_removes_events(self, source_service, event_repository, fetcher, owner_id):
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="a"))
        source = await source_service.create_url_source(owner_id, "Personal", FEED_URL)

        await source_service.delete_source(source.id)

        assert await event_repository.list_uids(source.id) == set()
        with pytest.raises(NotFoundError):
            await source_service.get_source(source.id)

    @pytest.mark.asyncio
    async def test_delete_unknown_source(self, source_service):
        with pytest.raises(NotFoundError):
            await source_service.delete_source(uuid4())

    @pytest.mark.asyncio
    async def test_rename_source(self, source_service, fetcher, owner_id):
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="a"))
        source = await source_service.create_url_source(owner_id, "Personal", FEED_URL)

        renamed = await source_service.update_source(source.id, name="  Home  ")

        assert renamed.name == "Home"
        assert (await source_service.get_source(source.id)).name == "Home"
        assert fetcher.requested == [FEED_URL]

    @pytest.mark.asyncio
    async def test_new_url_resyncs(self, source_service, fetcher, owner_id):
        """Should replace the old feed's events with the new feed's after a URL change."""
        other_url = "https://calendar.example.com/work.ics"
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="old"))
        fetcher.feeds[other_url] = make_ics(vevent(uid="new-1"), vevent(uid="new-2"))
        source = await source_service.create_url_source(owner_id, "Personal", FEED_URL)

        updated = await source_service.update_source(source.id, url=other_url)

        assert updated.source_url == other_url
        assert fetcher.requested == [FEED_URL, other_url]
        events = await source_service.list_events(source.id)
        assert sorted(event.uid for event in events) == ["new-1", "new-2"]

    @pytest.mark.asyncio
    async def test_same_url_does_not_resync(self, source_service, fetcher, owner_id):
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="a"))
        source = await source_service.create_url_source(owner_id, "Personal", FEED_URL)

        await source_service.update_source(source.id, url=f"  {FEED_URL} ")

        assert fetcher.requested == [FEED_URL]

    @pytest.mark.asyncio
    async def test_invalid_new_url_rejected(self, source_service, fetcher, owner_id):
        fetcher.feeds[FEED_URL] = make_ics(vevent(uid="a"))
        source = await source_service.create_url_source(owner_id, "Personal", FEED_URL)

        with pytest.raises(ValidationError):
            await source_service.update_source(source.id, url="ftp://calendar.example.com/a.ics")
        assert (await source_service.get_source(source.id)).source_url == FEED_URL

    @pytest.mark.asyncio
    async def test_url_change_refused_for_manual_source(self, source_service, owner_id):
        source = await source_service.create_manual_source(owner_id, "Manual")

        with pytest.raises(ValidationError):
            await source_service.update_source(source.id, url=FEED_URL)

    @pytest.mark.asyncio
    async def test_update_unknown_source(self, source_service):
        with pytest.raises(NotFoundError):
            await source_service.update_source(uuid4(), name="Ghost")

    @pytest.mark.asyncio
    async def test_list_events_in_start_order(self, source_service, fetcher, owner_id):
        fetcher.feeds[FEED_URL] = make_ics(
            vevent(uid="late", start="20300304T150000Z", end="20300304T160000Z"),
            vevent(uid="early", start="20300304T080000Z", end="20300304T090000Z"),
        )
        source = await source_service.create_url_source(owner_id, "Personal", FEED_URL)

        events = await source_service.list_events(source.id)

        assert [event.uid for event in events] == ["early", "late"]
        assert events[0].start_time == utc(2030, 3, 4, 8)

    @pytest.mark.asyncio
    async def test_list_events_unknown_source(self, source_service):
        with pytest.raises(NotFoundError):
            await source_service.list_events(uuid4())
