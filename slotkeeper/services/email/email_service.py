# ===== slotkeeper/services/email/email_service.py =====
import html
import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from slotkeeper.config.settings import settings

logger = logging.getLogger(__name__)


def format_booking_time(value: str, tz_name: Optional[str]) -> str:
    """Render an ISO instant in the requester's timezone, e.g. 'Monday, March 4, 2030 at 9:00 AM (CET)'"""
    instant = datetime.fromisoformat(value)
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo("UTC")
    local = instant.astimezone(tz)
    hour = local.strftime("%I").lstrip("0") or "12"
    return f"{local.strftime('%A, %B')} {local.day}, {local.year} at {hour}:{local.strftime('%M %p')} ({local.tzname()})"


def _wrap_html(title: str, gradient: str, body: str) -> str:
    return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="UTF-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
        </head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background: {gradient}; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
                <h1 style="color: white; margin: 0; font-size: 28px;">{title}</h1>
            </div>

            <div style="background-color: #ffffff; padding: 30px; border: 1px solid #e0e0e0; border-top: none; border-radius: 0 0 10px 10px;">
                {body}

                <hr style="border: none; border-top: 1px solid #e0e0e0; margin: 30px 0;">

                <p style="font-size: 12px; color: #999; margin: 0;">
                    This is an automated message from {settings.APP_NAME}. Please don't reply to this email.
                </p>
            </div>
        </body>
        </html>
        """


def _detail_rows(rows: List[tuple]) -> str:
    cells = "".join(
        f"""<tr>
                            <td style="padding: 8px 0; color: #666; font-weight: bold;">{html.escape(str(label))}:</td>
                            <td style="padding: 8px 0; color: #333;">{html.escape(str(value))}</td>
                        </tr>"""
        for label, value in rows if value
    )
    return f"""<div style="background-color: #f8f9fa; padding: 20px; border-radius: 8px; margin: 25px 0;">
                    <table style="width: 100%; border-collapse: collapse;">{cells}</table>
                </div>"""


class EmailService:
    """Service for sending emails via SMTP"""

    @staticmethod
    def _get_smtp_connection():
        """Create and return SMTP connection"""
        try:
            if settings.EMAIL_USE_TLS:
                server = smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT)
                server.starttls()
            else:
                server = smtplib.SMTP_SSL(settings.EMAIL_HOST, settings.EMAIL_PORT)

            if settings.EMAIL_USERNAME and settings.EMAIL_PASSWORD:
                server.login(settings.EMAIL_USERNAME, settings.EMAIL_PASSWORD)

            return server
        except Exception as e:
            logger.error(f"Failed to connect to SMTP server: {e}")
            raise

    @staticmethod
    def send_email(
            to_email: str,
            subject: str,
            html_content: str,
            plain_text: Optional[str] = None
    ) -> bool:
        """
        Send an email using SMTP

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_content: HTML content of the email
            plain_text: Plain text version (fallback for non-HTML clients)

        Returns:
            bool: True if email sent successfully
        """
        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM_ADDRESS}>"
            msg['To'] = to_email

            if plain_text:
                msg.attach(MIMEText(plain_text, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            server = EmailService._get_smtp_connection()
            try:
                server.sendmail(settings.EMAIL_FROM_ADDRESS, [to_email], msg.as_string())
            finally:
                server.quit()

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            raise

    @staticmethod
    def send_booking_confirmation_email(booking: dict, rule: dict) -> bool:
        """Tell the requester their booking went through"""
        start = format_booking_time(booking["start_time"], booking.get("timezone"))
        end = format_booking_time(booking["end_time"], booking.get("timezone"))
        status_line = (
            "Your booking is confirmed!"
            if booking.get("status") == "confirmed"
            else "We received your booking request."
        )

        body = f"""<h2 style="color: #333; margin-top: 0;">Hello {html.escape(booking['name'])},</h2>

                <p style="font-size: 16px; color: #555;">{status_line}</p>

                {_detail_rows([("Event", rule['name']), ("Starts", start), ("Ends", end), ("Description", rule.get('description'))])}

                <p style="font-size: 14px; color: #555;">
                    If you need to cancel or reschedule, please reply to the organizer.
                </p>"""

        plain_text = f"""
        Hello {booking['name']},

        {status_line}

        Booking Details:
        - Event: {rule['name']}
        - Date and Time: {start} - {end}
        {f"Description: {rule['description']}" if rule.get('description') else ''}

        If you need to cancel or reschedule, please reply to the organizer.
        """

        return EmailService.send_email(
            to_email=booking["email"],
            subject=f"Booking Confirmation: {rule['name']}",
            html_content=_wrap_html("Booking Received", "linear-gradient(135deg, #43e97b 0%, #38f9d7 100%)", body),
            plain_text=plain_text
        )

    @staticmethod
    def send_booking_owner_notification_email(booking: dict, rule: dict) -> bool:
        """Tell the rule owner someone booked a slot"""
        start = format_booking_time(booking["start_time"], rule.get("timezone"))
        end = format_booking_time(booking["end_time"], rule.get("timezone"))

        body = f"""<h2 style="color: #333; margin-top: 0;">New booking for "{html.escape(rule['name'])}"</h2>

                {_detail_rows([("Customer", f"{booking['name']} ({booking['email']})"), ("Starts", start), ("Ends", end), ("Notes", booking.get('notes'))])}"""

        plain_text = f"""
        You have a new booking for "{rule['name']}"!

        Booking Details:
        - Customer: {booking['name']} ({booking['email']})
        - Date and Time: {start} - {end}
        {f"- Notes: {booking['notes']}" if booking.get('notes') else ''}
        """

        return EmailService.send_email(
            to_email=rule["owner_email"],
            subject=f"New Booking: {rule['name']}",
            html_content=_wrap_html("New Booking", "linear-gradient(135deg, #667eea 0%, #764ba2 100%)", body),
            plain_text=plain_text
        )

    @staticmethod
    def send_booking_cancellation_email(to_email: str, booking: dict, rule: dict, subject: str) -> bool:
        """Cancelled booking notice, sent to requester and owner alike"""
        start = format_booking_time(booking["start_time"], booking.get("timezone"))
        end = format_booking_time(booking["end_time"], booking.get("timezone"))

        body = f"""<p style="font-size: 16px; color: #555;">A booking has been cancelled.</p>

                {_detail_rows([("Event", rule['name']), ("Date and Time", f"{start} - {end}"), ("Customer", f"{booking['name']} ({booking['email']})"), ("Cancellation Reason", booking.get('cancellation_reason'))])}

                <p style="font-size: 14px; color: #555;">This time slot is now available again for booking.</p>"""

        plain_text = f"""
        A booking has been cancelled.

        Cancelled Booking Details:
        - Event: {rule['name']}
        - Date and Time: {start} - {end}
        - Customer: {booking['name']} ({booking['email']})
        {f"- Cancellation Reason: {booking['cancellation_reason']}" if booking.get('cancellation_reason') else ''}

        This time slot is now available again for booking.
        """

        return EmailService.send_email(
            to_email=to_email,
            subject=subject,
            html_content=_wrap_html("Booking Cancelled", "linear-gradient(135deg, #f093fb 0%, #f5576c 100%)", body),
            plain_text=plain_text
        )
