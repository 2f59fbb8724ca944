"""
Slotkeeper service wiring and the calendar sync daemon

The API layer builds its services with build_services(); the sync daemon
runs the per-calendar scheduler until SIGINT/SIGTERM.
"""
import asyncio
import logging
import signal
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slotkeeper.config.database import create_tables, dispose_engine, get_session_factory
from slotkeeper.config.settings import get_settings
from slotkeeper.repositories.sqlalchemy_repositories import (
    SqlAlchemyAvailabilityRuleRepository,
    SqlAlchemyBookingRepository,
    SqlAlchemyCalendarSourceRepository,
    SqlAlchemyEventRepository,
)
from slotkeeper.services.availability.availability_rule_service import AvailabilityRuleService
from slotkeeper.services.availability.availability_service import AvailabilityService
from slotkeeper.services.booking.booking_lock import BookingLock, LocalBookingLock
from slotkeeper.services.booking.booking_service import BookingService
from slotkeeper.services.calendar.calendar_source_service import CalendarSourceService
from slotkeeper.services.calendar.calendar_sync_service import CalendarSyncService
from slotkeeper.services.calendar.feed_fetcher import FeedFetcher, HttpFeedFetcher
from slotkeeper.services.calendar.ics_parser import IcsFeedParser
from slotkeeper.services.notification.notification_service import CeleryNotificationSink, NotificationSink
from slotkeeper.services.scheduler.sync_scheduler import CalendarSyncScheduler
from slotkeeper.utils.my_logging import setup_logging

logger = logging.getLogger(__name__)


@dataclass
class Services:
    calendar_sync: CalendarSyncService
    calendar_sources: CalendarSourceService
    availability: AvailabilityService
    availability_rules: AvailabilityRuleService
    bookings: BookingService
    scheduler: CalendarSyncScheduler


def build_services(
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: Optional[FeedFetcher] = None,
        notification_sink: Optional[NotificationSink] = None,
        booking_lock: Optional[BookingLock] = None,
        clock: Optional[Callable[[], datetime]] = None
) -> Services:
    """Wire repositories and services around one session factory"""
    settings = get_settings()

    calendar_repository = SqlAlchemyCalendarSourceRepository(session_factory)
    event_repository = SqlAlchemyEventRepository(session_factory)
    rule_repository = SqlAlchemyAvailabilityRuleRepository(session_factory)
    booking_repository = SqlAlchemyBookingRepository(session_factory)

    calendar_sync = CalendarSyncService(
        calendar_repository,
        event_repository,
        fetcher or HttpFeedFetcher(),
        IcsFeedParser(),
        clock=clock,
    )
    availability = AvailabilityService(rule_repository, event_repository, booking_repository, clock=clock)

    return Services(
        calendar_sync=calendar_sync,
        calendar_sources=CalendarSourceService(calendar_repository, event_repository, calendar_sync),
        availability=availability,
        availability_rules=AvailabilityRuleService(rule_repository),
        bookings=BookingService(
            rule_repository,
            booking_repository,
            availability,
            notification_sink or CeleryNotificationSink(),
            lock=booking_lock or LocalBookingLock(),
            initial_status=settings.BOOKING_INITIAL_STATUS,
        ),
        scheduler=CalendarSyncScheduler.from_settings(calendar_repository, calendar_sync, settings),
    )


async def run_sync_daemon(stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the calendar sync scheduler until stop_event is set or a signal arrives"""
    settings = get_settings()
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread
            pass

    if settings.DEBUG:
        await create_tables()

    services = build_services(get_session_factory())

    logger.info(f"🚀 {settings.APP_NAME} calendar sync daemon starting up...")
    await services.scheduler.start()
    logger.info(f"📅 Syncing {len(services.scheduler.scheduled_calendar_ids)} calendars")

    try:
        await stop_event.wait()
    finally:
        logger.info("🛑 Calendar sync daemon shutting down...")
        await services.scheduler.stop()
        await dispose_engine()


def main() -> None:
    setup_logging()
    asyncio.run(run_sync_daemon())


if __name__ == "__main__":
    main()
