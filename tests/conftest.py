"""Shared test fixtures for slotkeeper tests.

Every test gets its own temporary SQLite database (aiosqlite driver) with
tables created from the ORM metadata, real SQLAlchemy repositories on top of
it, and services wired with a fixed clock, a fake feed fetcher and a
recording notification sink.
"""

from typing import AsyncIterator
from uuid import uuid4

import pytest

from slotkeeper.config.database import create_engine, create_session_factory, create_tables
from slotkeeper.models import CalendarSource, Event
from slotkeeper.repositories.sqlalchemy_repositories import (
    SqlAlchemyAvailabilityRuleRepository,
    SqlAlchemyBookingRepository,
    SqlAlchemyCalendarSourceRepository,
    SqlAlchemyEventRepository,
)
from slotkeeper.schemas.calendar_events import AvailabilityRuleCreate, CalendarSourceKind
from slotkeeper.services.availability.availability_rule_service import AvailabilityRuleService
from slotkeeper.services.availability.availability_service import AvailabilityService
from slotkeeper.services.booking.booking_lock import LocalBookingLock
from slotkeeper.services.booking.booking_service import BookingService
from slotkeeper.services.calendar.calendar_source_service import CalendarSourceService
from slotkeeper.services.calendar.calendar_sync_service import CalendarSyncService
from slotkeeper.services.calendar.ics_parser import IcsFeedParser
from tests.helpers import FakeFeedFetcher, FixedClock, RecordingSink, utc


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def engine(tmp_path) -> AsyncIterator:
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'slotkeeper.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def calendar_repository(session_factory):
    return SqlAlchemyCalendarSourceRepository(session_factory)


@pytest.fixture
def event_repository(session_factory):
    return SqlAlchemyEventRepository(session_factory)


@pytest.fixture
def rule_repository(session_factory):
    return SqlAlchemyAvailabilityRuleRepository(session_factory)


@pytest.fixture
def booking_repository(session_factory):
    return SqlAlchemyBookingRepository(session_factory)


# ─────────────────────────────────────────────────────────────────────────────
# Service Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(utc(2030, 1, 1, 0, 0))


@pytest.fixture
def fetcher() -> FakeFeedFetcher:
    return FakeFeedFetcher()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def sync_service(calendar_repository, event_repository, fetcher, clock):
    return CalendarSyncService(calendar_repository, event_repository, fetcher, IcsFeedParser(), clock=clock)


@pytest.fixture
def source_service(calendar_repository, event_repository, sync_service):
    return CalendarSourceService(calendar_repository, event_repository, sync_service)


@pytest.fixture
def rule_service(rule_repository):
    return AvailabilityRuleService(rule_repository, token_length=8)


@pytest.fixture
def availability_service(rule_repository, event_repository, booking_repository, clock):
    return AvailabilityService(rule_repository, event_repository, booking_repository, clock=clock)


@pytest.fixture
def booking_service(rule_repository, booking_repository, availability_service, sink):
    return BookingService(
        rule_repository,
        booking_repository,
        availability_service,
        sink,
        lock=LocalBookingLock(),
        initial_status="pending",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Data Factories
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def owner_id():
    return uuid4()


@pytest.fixture
def make_calendar(calendar_repository, owner_id):
    async def _make(kind: CalendarSourceKind = CalendarSourceKind.MANUAL, **fields) -> CalendarSource:
        fields.setdefault("name", f"{kind.value} calendar")
        source = CalendarSource(owner_id=owner_id, source_kind=kind.value, **fields)
        return await calendar_repository.add(source)
    return _make


@pytest.fixture
def add_event(session_factory):
    async def _add(calendar_id, start, end, uid=None, title="Busy") -> Event:
        event = Event(
            calendar_id=calendar_id,
            uid=uid or f"evt-{uuid4()}",
            title=title,
            start_time=start,
            end_time=end,
            timezone="UTC",
            is_all_day=False,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(event)
        return event
    return _add


@pytest.fixture
def make_rule(rule_service, owner_id):
    async def _make(**overrides):
        data = {
            "name": "Office hours",
            "owner_email": "owner@example.com",
            "slot_duration_minutes": 30,
            "buffer_minutes": 0,
            "timezone": "UTC",
            "available_days": [0, 1, 2, 3, 4],
            "time_ranges": [{"start": "09:00", "end": "10:00"}],
        }
        data.update(overrides)
        return await rule_service.create_rule(owner_id, AvailabilityRuleCreate(**data))
    return _make
