"""
Repository interfaces consumed by the services.

Every operation is a coroutine and may raise StorageError. Entities are the
ORM classes from slotkeeper.models, handed back detached from any session.
"""
from datetime import datetime
from typing import Any, Collection, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple
from uuid import UUID

from slotkeeper.models import AvailabilityRule, Booking, CalendarSource, Event


class CalendarSourceRepository(Protocol):
    async def get(self, calendar_id: UUID) -> Optional[CalendarSource]: ...

    async def list_by_owner(self, owner_id: UUID) -> List[CalendarSource]: ...

    async def list_syncable(self) -> List[CalendarSource]:
        """All url and file sources"""
        ...

    async def add(self, source: CalendarSource) -> CalendarSource: ...

    async def update(self, calendar_id: UUID, changes: Dict[str, Any]) -> Optional[CalendarSource]:
        """Set the given columns; id, owner_id and source_kind are immutable"""
        ...

    async def delete(self, calendar_id: UUID) -> bool:
        """Delete the source together with its events"""
        ...


class EventRepository(Protocol):
    async def list_uids(self, calendar_id: UUID) -> Set[str]: ...

    async def list_by_calendar(self, calendar_id: UUID) -> List[Event]: ...

    async def list_in_range(
            self,
            calendar_ids: Sequence[UUID],
            start: datetime,
            end: datetime
    ) -> List[Event]:
        """Events on any of the calendars overlapping [start, end)"""
        ...

    async def apply_sync_batch(
            self,
            calendar_id: UUID,
            upserts: Sequence[Event],
            stale_uids: Iterable[str],
            synced_at: datetime
    ) -> None:
        """
        Upsert by (calendar_id, uid), delete stale uids and stamp the source's
        last_synced_at, all in one transaction.
        """
        ...


class AvailabilityRuleRepository(Protocol):
    async def get(self, rule_id: UUID) -> Optional[AvailabilityRule]: ...

    async def get_by_share_token(self, share_token: str) -> Optional[AvailabilityRule]: ...

    async def list_by_owner(self, owner_id: UUID) -> List[AvailabilityRule]: ...

    async def share_token_exists(self, share_token: str) -> bool: ...

    async def add(self, rule: AvailabilityRule) -> AvailabilityRule: ...

    async def update(self, rule_id: UUID, changes: Dict[str, Any]) -> Optional[AvailabilityRule]: ...

    async def delete(self, rule_id: UUID) -> bool: ...


class BookingRepository(Protocol):
    async def get(self, booking_id: UUID) -> Optional[Booking]: ...

    async def list_by_rule(self, rule_id: UUID) -> List[Booking]: ...

    async def list_in_range(
            self,
            rule_id: UUID,
            start: datetime,
            end: datetime,
            include_cancelled: bool = False
    ) -> List[Booking]: ...

    async def count_for_day(self, rule_id: UUID, day_start: datetime, day_end: datetime) -> int:
        """Non-cancelled bookings starting within [day_start, day_end)"""
        ...

    async def add(self, booking: Booking) -> Booking:
        """Raises ConcurrencyConflict when a live booking already holds the slot"""
        ...

    async def transition_status(
            self,
            booking_id: UUID,
            status: str,
            allowed_from: Collection[str],
            cancellation_reason: Optional[str] = None
    ) -> Tuple[Optional[Booking], bool]:
        """
        Move the booking to `status` if its current status is in
        `allowed_from`, checked under a row lock. Returns the booking (None
        when unknown) and whether it changed.
        """
        ...
