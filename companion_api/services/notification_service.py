import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from dataclasses import dataclass
from datetime import date, time
from enum import Enum

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.core.config import settings
from companion_api.models.user import User

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    REQUEST_CREATED = "request_created"
    REQUEST_ACCEPTED = "request_accepted"
    REQUEST_REJECTED = "request_rejected"


_SUBJECTS: dict[NotificationEvent, str] = {
    NotificationEvent.BOOKING_CREATED: "New booking",
    NotificationEvent.BOOKING_CONFIRMED: "Booking confirmed",
    NotificationEvent.BOOKING_CANCELLED: "Booking cancelled",
    NotificationEvent.REQUEST_CREATED: "New booking request",
    NotificationEvent.REQUEST_ACCEPTED: "Booking request accepted",
    NotificationEvent.REQUEST_REJECTED: "Booking request declined",
}

_HEADLINES: dict[NotificationEvent, str] = {
    NotificationEvent.BOOKING_CREATED: "You have a new booking awaiting your confirmation.",
    NotificationEvent.BOOKING_CONFIRMED: "Your booking has been confirmed.",
    NotificationEvent.BOOKING_CANCELLED: "A booking has been cancelled.",
    NotificationEvent.REQUEST_CREATED: "A client has asked for a time outside your availability.",
    NotificationEvent.REQUEST_ACCEPTED: "Your booking request was accepted.",
    NotificationEvent.REQUEST_REJECTED: "Your booking request was declined.",
}


@dataclass(frozen=True)
class Notification:
    event: NotificationEvent
    to_email: str
    recipient_name: str | None
    on_date: date
    start_time: time | None = None
    end_time: time | None = None
    note: str | None = None


def _send_email_sync(to_email: str, subject: str, html_body: str) -> None:
    """Send email via SMTP (blocking). Use from background task."""
    if not settings.email_enabled:
        logger.debug("Email disabled (SMTP not configured), skipping send")
        return
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = to_email
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.from_email, [to_email], msg.as_string())
        logger.info("Email sent to %s", to_email)
    except Exception as e:
        logger.exception("Failed to send email to %s: %s", to_email, e)


def _html_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def build_notification_html(n: Notification) -> str:
    date_str = n.on_date.strftime("%A, %B %d, %Y")
    time_section = ""
    if n.start_time and n.end_time:
        time_section = f"""
                    <p style="margin:12px 0 0 0;font-size:12px;text-transform:uppercase;color:#6b7280;">Time</p>
                    <p style="margin:0;font-size:16px;font-weight:600;color:#111827;">{n.start_time:%I:%M %p} – {n.end_time:%I:%M %p}</p>"""
    note_section = ""
    if n.note:
        note_section = f'<p style="margin:0 0 24px 0;color:#6b7280;font-size:14px;">{_html_escape(n.note)}</p>'
    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{_SUBJECTS[n.event]}</title>
</head>
<body style="margin:0;padding:0;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;background-color:#f3f4f6;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width:560px;margin:40px auto;background:#ffffff;border-radius:12px;">
    <tr>
      <td style="padding:32px;">
        <h1 style="margin:0 0 8px 0;font-size:22px;font-weight:600;color:#111827;">{_SUBJECTS[n.event]}</h1>
        <p style="margin:0 0 24px 0;font-size:15px;color:#6b7280;">Hi {_html_escape(n.recipient_name or 'there')}, {_HEADLINES[n.event]}</p>
        <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background:#f9fafb;border-radius:8px;margin-bottom:24px;">
          <tr>
            <td style="padding:20px 24px;">
              <p style="margin:0 0 8px 0;font-size:12px;text-transform:uppercase;color:#6b7280;">Date</p>
              <p style="margin:0;font-size:16px;font-weight:600;color:#111827;">{date_str}</p>{time_section}
            </td>
          </tr>
        </table>
        {note_section}
        <p style="margin:0;font-size:14px;color:#374151;"><a href="{settings.frontend_url}">Open {settings.site_name}</a></p>
      </td>
    </tr>
  </table>
</body>
</html>
"""


def send_notification(n: Notification) -> None:
    """Compose and send one notification (call from background task)."""
    logger.info("Notification %s -> %s", n.event.value, n.to_email)
    subject = f"{settings.site_name} – {_SUBJECTS[n.event]}"
    _send_email_sync(n.to_email, subject, build_notification_html(n))


async def queue_notification(
    background_tasks: BackgroundTasks,
    session: AsyncSession,
    user_id: int,
    event: NotificationEvent,
    on_date: date,
    start_time: time | None = None,
    end_time: time | None = None,
    note: str | None = None,
) -> None:
    """Schedule delivery after the response is sent; never part of the booking transaction."""
    user = await session.get(User, user_id)
    if user is None or not user.email:
        logger.warning("No email for user %s, skipping %s notification", user_id, event.value)
        return
    background_tasks.add_task(
        send_notification,
        Notification(
            event=event,
            to_email=user.email,
            recipient_name=user.full_name,
            on_date=on_date,
            start_time=start_time,
            end_time=end_time,
            note=note,
        ),
    )
