# ===== slotkeeper/services/booking/booking_service.py =====
from datetime import datetime, timezone as dt_timezone
from typing import List, Optional
from uuid import UUID
import logging

from pydantic import ValidationError as SchemaValidationError

from slotkeeper.config.settings import get_settings
from slotkeeper.core.exceptions import (
    ConcurrencyConflict,
    NotFoundError,
    SLOT_UNAVAILABLE_MESSAGE,
    ValidationError,
)
from slotkeeper.models import AvailabilityRule, Booking
from slotkeeper.repositories.base import AvailabilityRuleRepository, BookingRepository
from slotkeeper.schemas.calendar_events import BookingRequest, BookingStatus, NotificationEvent
from slotkeeper.services.availability.availability_service import AvailabilityService
from slotkeeper.services.booking.booking_lock import BookingLock, LocalBookingLock
from slotkeeper.services.notification.notification_service import NotificationSink
from slotkeeper.utils.time_ranges import local_date, resolve_timezone

logger = logging.getLogger(__name__)


class BookingService:
    """Admits, confirms and cancels bookings against shared availability rules"""

    def __init__(
            self,
            rule_repository: AvailabilityRuleRepository,
            booking_repository: BookingRepository,
            availability_service: AvailabilityService,
            notification_sink: NotificationSink,
            lock: Optional[BookingLock] = None,
            initial_status: Optional[str] = None
    ):
        self.rule_repository = rule_repository
        self.booking_repository = booking_repository
        self.availability_service = availability_service
        self.notification_sink = notification_sink
        self.lock = lock or LocalBookingLock()
        self.initial_status = BookingStatus(initial_status or get_settings().BOOKING_INITIAL_STATUS)
        if self.initial_status == BookingStatus.CANCELLED:
            raise ValueError("Bookings cannot start out cancelled")

    async def create_booking(
            self,
            share_token: str,
            start: datetime,
            end: datetime,
            name: str,
            email: str,
            notes: Optional[str] = None,
            timezone: Optional[str] = None
    ) -> Booking:
        """
        Book [start, end) on the rule behind `share_token`.

        The free slots of the requested day are recomputed under the rule's
        admission lock and the request must match one of them exactly.

        Raises:
            NotFoundError: unknown share token
            ValidationError: bad input, inactive rule, or the slot is not free
        """
        try:
            request = BookingRequest(
                share_token=share_token,
                start=start,
                end=end,
                name=name,
                email=email,
                notes=notes,
                timezone=timezone,
            )
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid booking request: {e}") from e

        rule = await self.rule_repository.get_by_share_token(request.share_token)
        if rule is None:
            raise NotFoundError("Availability rule not found")
        if not rule.is_active:
            raise ValidationError("Availability rule is not active")

        start_utc = request.start.astimezone(dt_timezone.utc)
        end_utc = request.end.astimezone(dt_timezone.utc)
        day = local_date(start_utc, resolve_timezone(rule.timezone))

        async with self.lock.hold(rule.id):
            slots = await self.availability_service.compute_available_slots(rule, day)
            if not any(slot.start == start_utc and slot.end == end_utc for slot in slots):
                raise ValidationError(SLOT_UNAVAILABLE_MESSAGE)

            booking = Booking(
                rule_id=rule.id,
                name=request.name,
                email=request.email,
                notes=request.notes,
                start_time=start_utc,
                end_time=end_utc,
                timezone=request.timezone or rule.timezone,
                status=self.initial_status.value,
            )
            try:
                booking = await self.booking_repository.add(booking)
            except ConcurrencyConflict as e:
                logger.warning(f"Booking insert for rule {rule.id} lost a race: {e}")
                raise ValidationError(SLOT_UNAVAILABLE_MESSAGE) from e

        logger.info(
            f"Booking {booking.id} created for rule {rule.id} "
            f"{start_utc.isoformat()} - {end_utc.isoformat()} ({booking.status})"
        )
        self._notify(NotificationEvent.BOOKING_CREATED, booking, rule)
        return booking

    async def cancel_booking(self, booking_id: UUID, reason: Optional[str] = None) -> Booking:
        """Cancel a booking. Cancelling twice is a no-op and notifies nobody."""
        booking = await self.get_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            return booking

        async with self.lock.hold(booking.rule_id):
            cancelled, changed = await self.booking_repository.transition_status(
                booking_id,
                BookingStatus.CANCELLED.value,
                allowed_from=(BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value),
                cancellation_reason=reason,
            )
        if cancelled is None:
            raise NotFoundError(f"Booking not found: {booking_id}")
        if not changed:
            return cancelled

        logger.info(f"Booking {booking_id} cancelled")
        rule = await self.rule_repository.get(cancelled.rule_id)
        if rule is not None:
            self._notify(NotificationEvent.BOOKING_CANCELLED, cancelled, rule)
        return cancelled

    async def confirm_booking(self, booking_id: UUID) -> Booking:
        booking = await self.get_booking(booking_id)
        if booking.status == BookingStatus.CONFIRMED.value:
            return booking

        async with self.lock.hold(booking.rule_id):
            confirmed, changed = await self.booking_repository.transition_status(
                booking_id,
                BookingStatus.CONFIRMED.value,
                allowed_from=(BookingStatus.PENDING.value,),
            )
        if confirmed is None:
            raise NotFoundError(f"Booking not found: {booking_id}")
        if confirmed.status == BookingStatus.CANCELLED.value:
            raise ValidationError("Cancelled bookings cannot be confirmed")

        if changed:
            logger.info(f"Booking {booking_id} confirmed")
        return confirmed

    async def get_booking(self, booking_id: UUID) -> Booking:
        booking = await self.booking_repository.get(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking not found: {booking_id}")
        return booking

    async def list_bookings(self, rule_id: UUID) -> List[Booking]:
        return await self.booking_repository.list_by_rule(rule_id)

    def _notify(self, event: NotificationEvent, booking: Booking, rule: AvailabilityRule) -> None:
        # Notification failures never undo a booking transition
        try:
            self.notification_sink.notify(event, booking, rule)
        except Exception as e:
            logger.error(f"Failed to emit {event.value} for booking {booking.id}: {e}", exc_info=True)
