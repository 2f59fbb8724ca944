# ===== slotkeeper/services/notification/notification_service.py =====
from typing import Any, Dict, Protocol
import logging

from slotkeeper.models import AvailabilityRule, Booking
from slotkeeper.schemas.calendar_events import NotificationEvent
from slotkeeper.tasks.email_tasks import send_booking_notification

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, event: NotificationEvent, booking: Booking, rule: AvailabilityRule) -> None: ...


def booking_payload(booking: Booking, rule: AvailabilityRule) -> Dict[str, Any]:
    """JSON-safe snapshot of a booking and its rule for the task queue"""
    return {
        "booking": {
            "id": str(booking.id),
            "name": booking.name,
            "email": booking.email,
            "notes": booking.notes,
            "start_time": booking.start_time.isoformat(),
            "end_time": booking.end_time.isoformat(),
            "timezone": booking.timezone,
            "status": booking.status,
            "cancellation_reason": booking.cancellation_reason,
        },
        "rule": {
            "id": str(rule.id),
            "name": rule.name,
            "description": rule.description,
            "owner_email": rule.owner_email,
            "timezone": rule.timezone,
            "share_token": rule.share_token,
        },
    }


class CeleryNotificationSink:
    """Hands booking events to the email worker through Celery"""

    def notify(self, event: NotificationEvent, booking: Booking, rule: AvailabilityRule) -> None:
        send_booking_notification.delay(event.value, booking_payload(booking, rule))
        logger.info(f"Queued {event.value} notification for booking {booking.id}")
