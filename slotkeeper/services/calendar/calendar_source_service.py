# ===== slotkeeper/services/calendar/calendar_source_service.py =====
from typing import List, Optional
from urllib.parse import urlparse
from uuid import UUID
import logging

from slotkeeper.core.exceptions import NotFoundError, SlotkeeperError, ValidationError
from slotkeeper.models import CalendarSource, Event
from slotkeeper.repositories.base import CalendarSourceRepository, EventRepository
from slotkeeper.schemas.calendar_events import CalendarSourceKind
from slotkeeper.services.calendar.calendar_sync_service import CalendarSyncService

logger = logging.getLogger(__name__)

SUPPORTED_URL_SCHEMES = ("http", "https", "webcal")


class CalendarSourceService:
    """Manages the calendars availability is computed from"""

    def __init__(
            self,
            calendar_repository: CalendarSourceRepository,
            event_repository: EventRepository,
            sync_service: CalendarSyncService
    ):
        self.calendar_repository = calendar_repository
        self.event_repository = event_repository
        self.sync_service = sync_service

    async def create_url_source(self, owner_id: UUID, name: str, url: str) -> CalendarSource:
        source = CalendarSource(
            owner_id=owner_id,
            name=self._clean_name(name),
            source_kind=CalendarSourceKind.URL.value,
            source_url=self._clean_url(url),
        )
        return await self._add_and_sync(source)

    async def create_file_source(self, owner_id: UUID, name: str, payload: str) -> CalendarSource:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        if not payload or not payload.strip():
            raise ValidationError("Calendar file is empty")

        source = CalendarSource(
            owner_id=owner_id,
            name=self._clean_name(name),
            source_kind=CalendarSourceKind.FILE.value,
            source_payload=payload,
        )
        return await self._add_and_sync(source)

    async def create_manual_source(self, owner_id: UUID, name: str) -> CalendarSource:
        source = CalendarSource(
            owner_id=owner_id,
            name=self._clean_name(name),
            source_kind=CalendarSourceKind.MANUAL.value,
        )
        source = await self.calendar_repository.add(source)
        logger.info(f"Manual calendar {source.id} created for owner {owner_id}")
        return source

    async def get_source(self, calendar_id: UUID) -> CalendarSource:
        source = await self.calendar_repository.get(calendar_id)
        if source is None:
            raise NotFoundError(f"Calendar not found: {calendar_id}")
        return source

    async def list_sources(self, owner_id: UUID) -> List[CalendarSource]:
        return await self.calendar_repository.list_by_owner(owner_id)

    async def update_source(
            self,
            calendar_id: UUID,
            name: Optional[str] = None,
            url: Optional[str] = None
    ) -> CalendarSource:
        """Rename a calendar or point a url calendar at another feed, which is synced right away"""
        source = await self.get_source(calendar_id)

        changes = {}
        if name is not None:
            changes["name"] = self._clean_name(name)
        if url is not None:
            if source.kind != CalendarSourceKind.URL:
                raise ValidationError(f"Only url calendars have a feed address: {calendar_id}")
            url = self._clean_url(url)
            if url != source.source_url:
                changes["source_url"] = url
        if not changes:
            return source

        updated = await self.calendar_repository.update(calendar_id, changes)
        if updated is None:
            raise NotFoundError(f"Calendar not found: {calendar_id}")
        logger.info(f"Calendar {calendar_id} updated: {sorted(changes)}")

        if "source_url" in changes:
            await self._try_sync(updated)
        return updated

    async def list_events(self, calendar_id: UUID) -> List[Event]:
        """Stored events of one calendar, earliest first"""
        await self.get_source(calendar_id)
        return await self.event_repository.list_by_calendar(calendar_id)

    async def delete_source(self, calendar_id: UUID) -> None:
        """Delete a calendar together with all its events"""
        if not await self.calendar_repository.delete(calendar_id):
            raise NotFoundError(f"Calendar not found: {calendar_id}")
        logger.info(f"Calendar {calendar_id} deleted")

    async def _add_and_sync(self, source: CalendarSource) -> CalendarSource:
        source = await self.calendar_repository.add(source)
        logger.info(f"{source.source_kind} calendar {source.id} created for owner {source.owner_id}")

        # The source stays registered even if its first sync fails; the scheduler retries it
        await self._try_sync(source)
        return source

    async def _try_sync(self, source: CalendarSource) -> None:
        try:
            await self.sync_service.sync(source)
        except SlotkeeperError as e:
            logger.error(f"Sync of calendar {source.id} failed: {e}")

    @staticmethod
    def _clean_url(url: Optional[str]) -> str:
        url = (url or "").strip()
        parsed = urlparse(url)
        if parsed.scheme.lower() not in SUPPORTED_URL_SCHEMES or not parsed.netloc:
            raise ValidationError(f"Calendar URL must be an http(s) address: {url!r}")
        return url

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Calendar name is required")
        return name[:255]
