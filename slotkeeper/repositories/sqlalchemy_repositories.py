# slotkeeper/repositories/sqlalchemy_repositories.py
"""SQLAlchemy (asyncio) implementations of the repository interfaces"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Collection, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slotkeeper.core.exceptions import ConcurrencyConflict, StorageError
from slotkeeper.models import AvailabilityRule, Booking, CalendarSource, Event
from slotkeeper.schemas.calendar_events import BookingStatus, CalendarSourceKind

logger = logging.getLogger(__name__)

# Columns copied from a freshly parsed event onto the stored row
_EVENT_FIELDS = (
    "title",
    "description",
    "location",
    "start_time",
    "end_time",
    "timezone",
    "is_all_day",
    "recurrence_rule",
)

_IMMUTABLE_CALENDAR_FIELDS = {"id", "owner_id", "source_kind", "created_at"}
_IMMUTABLE_RULE_FIELDS = {"id", "owner_id", "share_token", "created_at"}


class _SqlAlchemyRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """One session, one transaction; commits on success, rolls back otherwise"""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error(f"{type(self).__name__} storage failure: {e}")
            raise StorageError(str(e)) from e


class SqlAlchemyCalendarSourceRepository(_SqlAlchemyRepository):

    async def get(self, calendar_id: UUID) -> Optional[CalendarSource]:
        async with self._transaction() as session:
            return await session.get(CalendarSource, calendar_id)

    async def list_by_owner(self, owner_id: UUID) -> List[CalendarSource]:
        async with self._transaction() as session:
            result = await session.execute(
                select(CalendarSource)
                .where(CalendarSource.owner_id == owner_id)
                .order_by(CalendarSource.created_at)
            )
            return list(result.scalars().all())

    async def list_syncable(self) -> List[CalendarSource]:
        async with self._transaction() as session:
            result = await session.execute(
                select(CalendarSource).where(
                    CalendarSource.source_kind.in_(
                        [CalendarSourceKind.URL.value, CalendarSourceKind.FILE.value]
                    )
                )
            )
            return list(result.scalars().all())

    async def add(self, source: CalendarSource) -> CalendarSource:
        async with self._transaction() as session:
            session.add(source)
        return source

    async def update(self, calendar_id: UUID, changes: Dict[str, Any]) -> Optional[CalendarSource]:
        async with self._transaction() as session:
            source = await session.get(CalendarSource, calendar_id)
            if source is None:
                return None
            for field, value in changes.items():
                if field in _IMMUTABLE_CALENDAR_FIELDS:
                    raise ValueError(f"Field cannot be updated: {field}")
                setattr(source, field, value)
            return source

    async def delete(self, calendar_id: UUID) -> bool:
        async with self._transaction() as session:
            source = await session.get(CalendarSource, calendar_id)
            if source is None:
                return False
            await session.execute(delete(Event).where(Event.calendar_id == calendar_id))
            await session.delete(source)
            return True


class SqlAlchemyEventRepository(_SqlAlchemyRepository):

    async def list_uids(self, calendar_id: UUID) -> Set[str]:
        async with self._transaction() as session:
            result = await session.execute(
                select(Event.uid).where(Event.calendar_id == calendar_id)
            )
            return set(result.scalars().all())

    async def list_by_calendar(self, calendar_id: UUID) -> List[Event]:
        async with self._transaction() as session:
            result = await session.execute(
                select(Event)
                .where(Event.calendar_id == calendar_id)
                .order_by(Event.start_time)
            )
            return list(result.scalars().all())

    async def list_in_range(
            self,
            calendar_ids: Sequence[UUID],
            start: datetime,
            end: datetime
    ) -> List[Event]:
        if not calendar_ids:
            return []
        async with self._transaction() as session:
            result = await session.execute(
                select(Event)
                .where(
                    Event.calendar_id.in_(list(calendar_ids)),
                    Event.start_time < end,
                    Event.end_time > start,
                )
                .order_by(Event.start_time)
            )
            return list(result.scalars().all())

    async def apply_sync_batch(
            self,
            calendar_id: UUID,
            upserts: Sequence[Event],
            stale_uids: Iterable[str],
            synced_at: datetime
    ) -> None:
        stale = list(stale_uids)
        async with self._transaction() as session:
            source = await session.get(CalendarSource, calendar_id)
            if source is None:
                raise StorageError(f"Calendar source vanished during sync: {calendar_id}")

            result = await session.execute(
                select(Event).where(Event.calendar_id == calendar_id)
            )
            existing = {event.uid: event for event in result.scalars().all()}

            for incoming in upserts:
                stored = existing.get(incoming.uid)
                if stored is None:
                    incoming.calendar_id = calendar_id
                    session.add(incoming)
                    existing[incoming.uid] = incoming
                else:
                    for field in _EVENT_FIELDS:
                        setattr(stored, field, getattr(incoming, field))

            if stale:
                await session.execute(
                    delete(Event).where(
                        Event.calendar_id == calendar_id,
                        Event.uid.in_(stale),
                    )
                )

            source.last_synced_at = synced_at


class SqlAlchemyAvailabilityRuleRepository(_SqlAlchemyRepository):

    async def get(self, rule_id: UUID) -> Optional[AvailabilityRule]:
        async with self._transaction() as session:
            return await session.get(AvailabilityRule, rule_id)

    async def get_by_share_token(self, share_token: str) -> Optional[AvailabilityRule]:
        async with self._transaction() as session:
            result = await session.execute(
                select(AvailabilityRule).where(AvailabilityRule.share_token == share_token)
            )
            return result.scalar_one_or_none()

    async def list_by_owner(self, owner_id: UUID) -> List[AvailabilityRule]:
        async with self._transaction() as session:
            result = await session.execute(
                select(AvailabilityRule)
                .where(AvailabilityRule.owner_id == owner_id)
                .order_by(AvailabilityRule.created_at)
            )
            return list(result.scalars().all())

    async def share_token_exists(self, share_token: str) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                select(func.count()).select_from(AvailabilityRule).where(
                    AvailabilityRule.share_token == share_token
                )
            )
            return result.scalar_one() > 0

    async def add(self, rule: AvailabilityRule) -> AvailabilityRule:
        async with self._transaction() as session:
            session.add(rule)
        return rule

    async def update(self, rule_id: UUID, changes: Dict[str, Any]) -> Optional[AvailabilityRule]:
        async with self._transaction() as session:
            rule = await session.get(AvailabilityRule, rule_id)
            if rule is None:
                return None
            for field, value in changes.items():
                if field in _IMMUTABLE_RULE_FIELDS:
                    raise ValueError(f"Field cannot be updated: {field}")
                setattr(rule, field, value)
            return rule

    async def delete(self, rule_id: UUID) -> bool:
        async with self._transaction() as session:
            rule = await session.get(AvailabilityRule, rule_id)
            if rule is None:
                return False
            await session.execute(delete(Booking).where(Booking.rule_id == rule_id))
            await session.delete(rule)
            return True


class SqlAlchemyBookingRepository(_SqlAlchemyRepository):

    async def get(self, booking_id: UUID) -> Optional[Booking]:
        async with self._transaction() as session:
            return await session.get(Booking, booking_id)

    async def list_by_rule(self, rule_id: UUID) -> List[Booking]:
        async with self._transaction() as session:
            result = await session.execute(
                select(Booking)
                .where(Booking.rule_id == rule_id)
                .order_by(Booking.start_time.asc())
            )
            return list(result.scalars().all())

    async def list_in_range(
            self,
            rule_id: UUID,
            start: datetime,
            end: datetime,
            include_cancelled: bool = False
    ) -> List[Booking]:
        query = select(Booking).where(
            Booking.rule_id == rule_id,
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if not include_cancelled:
            query = query.where(Booking.status != BookingStatus.CANCELLED.value)

        async with self._transaction() as session:
            result = await session.execute(query.order_by(Booking.start_time.asc()))
            return list(result.scalars().all())

    async def count_for_day(self, rule_id: UUID, day_start: datetime, day_end: datetime) -> int:
        async with self._transaction() as session:
            result = await session.execute(
                select(func.count()).select_from(Booking).where(
                    Booking.rule_id == rule_id,
                    Booking.status != BookingStatus.CANCELLED.value,
                    Booking.start_time >= day_start,
                    Booking.start_time < day_end,
                )
            )
            return result.scalar_one()

    async def add(self, booking: Booking) -> Booking:
        async with self._transaction() as session:
            session.add(booking)
            try:
                await session.flush()
            except IntegrityError as e:
                raise ConcurrencyConflict(
                    f"Slot {booking.start_time.isoformat()} already booked for rule {booking.rule_id}"
                ) from e
        return booking

    async def transition_status(
            self,
            booking_id: UUID,
            status: str,
            allowed_from: Collection[str],
            cancellation_reason: Optional[str] = None
    ) -> Tuple[Optional[Booking], bool]:
        async with self._transaction() as session:
            booking = await session.get(Booking, booking_id, with_for_update=True)
            if booking is None:
                return None, False
            if booking.status not in allowed_from:
                return booking, False
            booking.status = status
            if status == BookingStatus.CANCELLED.value:
                booking.cancellation_reason = cancellation_reason
                booking.cancelled_at = datetime.now(timezone.utc)
            return booking, True
