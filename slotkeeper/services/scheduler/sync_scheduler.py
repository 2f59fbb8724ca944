# slotkeeper/services/scheduler/sync_scheduler.py
import asyncio
import logging
from enum import Enum
from typing import Callable, Coroutine, Dict, Optional, Set, Tuple
from uuid import UUID

from slotkeeper.config.settings import Settings, get_settings
from slotkeeper.core.exceptions import NotFoundError, ValidationError
from slotkeeper.repositories.base import CalendarSourceRepository
from slotkeeper.schemas.calendar_events import CalendarSourceKind
from slotkeeper.services.calendar.calendar_sync_service import CalendarSyncService

logger = logging.getLogger(__name__)

TaskFactory = Callable[[Coroutine], asyncio.Task]


class SyncJobState(str, Enum):
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    CANCELLED = "cancelled"


class CalendarSyncScheduler:
    """
    Keeps one periodic sync task per syncable calendar.

    A discovery loop re-enumerates url and file sources so calendars added or
    removed after start() are picked up. Every calendar has its own lock, so
    a periodic tick and a manual trigger never sync the same calendar at the
    same time, while different calendars sync independently.
    """

    def __init__(
            self,
            calendar_repository: CalendarSourceRepository,
            sync_service: CalendarSyncService,
            sync_interval_seconds: float,
            discovery_interval_seconds: Optional[float] = None,
            task_factory: Optional[TaskFactory] = None
    ):
        if sync_interval_seconds <= 0:
            raise ValueError("Sync interval must be positive")
        self.calendar_repository = calendar_repository
        self.sync_service = sync_service
        self.sync_interval_seconds = sync_interval_seconds
        self.discovery_interval_seconds = discovery_interval_seconds or sync_interval_seconds * 2
        self._task_factory = task_factory or asyncio.create_task

        self._tasks: Dict[UUID, asyncio.Task] = {}
        self._states: Dict[UUID, SyncJobState] = {}
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._discovery_task: Optional[asyncio.Task] = None
        self._running = False

    @classmethod
    def from_settings(
            cls,
            calendar_repository: CalendarSourceRepository,
            sync_service: CalendarSyncService,
            settings: Optional[Settings] = None,
            task_factory: Optional[TaskFactory] = None
    ) -> "CalendarSyncScheduler":
        settings = settings or get_settings()
        return cls(
            calendar_repository,
            sync_service,
            sync_interval_seconds=settings.CALENDAR_SYNC_INTERVAL_MINUTES * 60,
            discovery_interval_seconds=settings.discovery_interval_minutes * 60,
            task_factory=task_factory,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def scheduled_calendar_ids(self) -> Set[UUID]:
        return set(self._tasks)

    def job_state(self, calendar_id: UUID) -> SyncJobState:
        return self._states.get(calendar_id, SyncJobState.UNSCHEDULED)

    async def start(self) -> None:
        if self._running:
            logger.warning("Calendar sync scheduler already running")
            return

        logger.info(
            f"Starting calendar sync scheduler: sync every {self.sync_interval_seconds}s, "
            f"discovery every {self.discovery_interval_seconds}s"
        )
        self._running = True
        await self.refresh()
        self._discovery_task = self._task_factory(self._discovery_loop())

    async def stop(self) -> None:
        """Cancel discovery and every calendar task, then wait for all of them to finish"""
        if not self._running and not self._tasks:
            return

        logger.info("Stopping calendar sync scheduler")
        self._running = False

        tasks = list(self._tasks.values())
        if self._discovery_task is not None:
            tasks.append(self._discovery_task)
            self._discovery_task = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for calendar_id in self._tasks:
            self._states[calendar_id] = SyncJobState.CANCELLED
        self._tasks.clear()
        logger.info("Calendar sync scheduler stopped")

    async def refresh(self) -> Tuple[Set[UUID], Set[UUID]]:
        """
        Reconcile running tasks with the stored syncable calendars.

        Returns:
            (added, removed) calendar ids
        """
        sources = await self.calendar_repository.list_syncable()
        current = {source.id for source in sources}

        added = current - set(self._tasks)
        removed = set(self._tasks) - current

        for calendar_id in added:
            self._schedule(calendar_id)
        for calendar_id in removed:
            await self._unschedule(calendar_id)

        if added or removed:
            logger.info(f"Calendar discovery: {len(added)} added, {len(removed)} removed")
        return added, removed

    async def trigger_sync(self, calendar_id: UUID) -> bool:
        """
        Sync one calendar now, outside its periodic schedule.

        Raises:
            NotFoundError: unknown calendar
            ValidationError: manual calendars cannot be synced
            SyncError: fetch or parse failure
        """
        source = await self.calendar_repository.get(calendar_id)
        if source is None:
            raise NotFoundError(f"Calendar not found: {calendar_id}")
        if source.kind == CalendarSourceKind.MANUAL:
            raise ValidationError("Cannot sync manual calendars")

        async with self._lock_for(calendar_id):
            result = await self.sync_service.sync(source)

        logger.info(
            f"Triggered sync for calendar {source.name!r} ({calendar_id}): "
            f"{result.imported} imported, {result.deleted} deleted"
        )
        return True

    def _lock_for(self, calendar_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(calendar_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[calendar_id] = lock
        return lock

    def _schedule(self, calendar_id: UUID) -> None:
        self._tasks[calendar_id] = self._task_factory(self._calendar_loop(calendar_id))
        self._states[calendar_id] = SyncJobState.SCHEDULED
        logger.info(f"Scheduled sync for calendar {calendar_id}")

    async def _unschedule(self, calendar_id: UUID) -> None:
        task = self._tasks.pop(calendar_id, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._states[calendar_id] = SyncJobState.CANCELLED
        # A manual trigger may still hold the lock; a re-added calendar must wait on it
        lock = self._locks.get(calendar_id)
        if lock is not None and not lock.locked():
            del self._locks[calendar_id]
        logger.info(f"Removed sync job for calendar {calendar_id}")

    async def _calendar_loop(self, calendar_id: UUID) -> None:
        while True:
            await self._tick(calendar_id)
            await asyncio.sleep(self.sync_interval_seconds)

    async def _tick(self, calendar_id: UUID) -> None:
        async with self._lock_for(calendar_id):
            self._states[calendar_id] = SyncJobState.RUNNING
            try:
                logger.info(f"Syncing calendar {calendar_id}")
                await self.sync_service.sync_calendar(calendar_id)
            except Exception as e:
                logger.error(f"Error syncing calendar {calendar_id}: {e}", exc_info=True)
            finally:
                if self._states.get(calendar_id) == SyncJobState.RUNNING:
                    self._states[calendar_id] = SyncJobState.SCHEDULED

    async def _discovery_loop(self) -> None:
        while True:
            await asyncio.sleep(self.discovery_interval_seconds)
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Error checking for new calendars: {e}", exc_info=True)
