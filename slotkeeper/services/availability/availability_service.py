# ===== slotkeeper/services/availability/availability_service.py =====
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional
from uuid import UUID
import logging

from slotkeeper.core.exceptions import NotFoundError, ValidationError
from slotkeeper.models import AvailabilityRule
from slotkeeper.repositories.base import (
    AvailabilityRuleRepository,
    BookingRepository,
    EventRepository,
)
from slotkeeper.schemas.calendar_events import TimeRange, TimeSlot
from slotkeeper.services.availability.slot_calculator import apply_daily_cap, compute_free_slots
from slotkeeper.utils.time_ranges import Interval, day_bounds, resolve_timezone

logger = logging.getLogger(__name__)


class AvailabilityService:
    """Computes the bookable slots a rule offers on a given day"""

    def __init__(
            self,
            rule_repository: AvailabilityRuleRepository,
            event_repository: EventRepository,
            booking_repository: BookingRepository,
            clock: Optional[Callable[[], datetime]] = None
    ):
        self.rule_repository = rule_repository
        self.event_repository = event_repository
        self.booking_repository = booking_repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def compute_available_slots_for_token(self, share_token: str, day: date) -> List[TimeSlot]:
        rule = await self.rule_repository.get_by_share_token(share_token)
        if rule is None:
            raise NotFoundError("Availability rule not found")
        return await self.compute_available_slots(rule, day)

    async def compute_available_slots(self, rule: AvailabilityRule, day: date) -> List[TimeSlot]:
        """
        Free slots of `rule` on `day` (a calendar date in the rule's timezone).

        Busy time is every event on the rule's calendars plus every
        non-cancelled booking of the rule. Each candidate slot is widened by
        the rule's buffer before the overlap check.

        Raises:
            ValidationError: the rule is inactive or `day` lies outside its
                start_date/end_date window
        """
        if not rule.is_active:
            raise ValidationError("Availability rule is not active")
        if rule.start_date and day < rule.start_date:
            raise ValidationError(f"{day} is before the rule's start date {rule.start_date}")
        if rule.end_date and day > rule.end_date:
            raise ValidationError(f"{day} is after the rule's end date {rule.end_date}")

        if day.weekday() not in (rule.available_days or []):
            return []

        tz = resolve_timezone(rule.timezone)
        bounds = day_bounds(day, tz)
        buffer = timedelta(minutes=rule.buffer_minutes or 0)

        busy = await self._busy_intervals(rule, Interval(bounds.start - buffer, bounds.end + buffer))

        slots = compute_free_slots(
            day,
            tz,
            [TimeRange(**time_range) for time_range in rule.time_ranges],
            timedelta(minutes=rule.slot_duration_minutes),
            buffer,
            busy,
            now=self._clock(),
        )

        if rule.max_bookings_per_day is not None:
            existing = await self.booking_repository.count_for_day(rule.id, bounds.start, bounds.end)
            slots = apply_daily_cap(slots, rule.max_bookings_per_day, existing)

        logger.debug(f"Rule {rule.id} offers {len(slots)} slots on {day}")
        return slots

    async def _busy_intervals(self, rule: AvailabilityRule, window: Interval) -> List[Interval]:
        calendar_ids = [UUID(str(calendar_id)) for calendar_id in (rule.calendar_ids or [])]
        events = await self.event_repository.list_in_range(calendar_ids, window.start, window.end)
        bookings = await self.booking_repository.list_in_range(rule.id, window.start, window.end)

        busy = [Interval(event.start_time, event.end_time) for event in events]
        busy.extend(Interval(booking.start_time, booking.end_time) for booking in bookings)
        return busy
