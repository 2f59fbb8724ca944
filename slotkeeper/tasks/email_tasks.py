# ===== slotkeeper/tasks/email_tasks.py =====
from typing import Any, Dict
import logging

from slotkeeper.config.celery_config import celery_app
from slotkeeper.schemas.calendar_events import NotificationEvent
from slotkeeper.services.email.email_service import EmailService

logger = logging.getLogger(__name__)


def deliver_booking_notification(event_type: str, payload: Dict[str, Any]) -> int:
    """
    Send the emails belonging to one booking event.

    Returns:
        Number of emails sent
    """
    event = NotificationEvent(event_type)
    booking = payload["booking"]
    rule = payload["rule"]
    owner_email = rule.get("owner_email")
    sent = 0

    if event == NotificationEvent.BOOKING_CREATED:
        EmailService.send_booking_confirmation_email(booking, rule)
        sent += 1
        if owner_email:
            EmailService.send_booking_owner_notification_email(booking, rule)
            sent += 1
    elif event == NotificationEvent.BOOKING_CANCELLED:
        EmailService.send_booking_cancellation_email(
            booking["email"], booking, rule, subject=f"Booking Cancelled: {rule['name']}"
        )
        sent += 1
        if owner_email:
            EmailService.send_booking_cancellation_email(
                owner_email, booking, rule, subject=f"Booking Cancelled by Customer: {rule['name']}"
            )
            sent += 1

    return sent


@celery_app.task(bind=True, max_retries=3)
def send_booking_notification(self, event_type: str, payload: Dict[str, Any]):
    """
    Send booking notification emails

    Args:
        event_type: NotificationEvent value ("booking.created" / "booking.cancelled")
        payload: booking and rule snapshot built by booking_payload()
    """
    booking_id = payload.get("booking", {}).get("id")
    try:
        logger.info(f"Sending {event_type} emails for booking {booking_id}")

        sent = deliver_booking_notification(event_type, payload)

        logger.info(f"{sent} {event_type} emails sent for booking {booking_id}")
        return {"status": "success", "booking_id": booking_id, "sent": sent}

    except Exception as exc:
        logger.error(f"Failed to send {event_type} emails for booking {booking_id}: {exc}")

        # Retry with exponential backoff: 1min, 2min, 4min
        raise self.retry(
            exc=exc,
            countdown=60 * (2 ** self.request.retries)
        )
