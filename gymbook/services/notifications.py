"""
Booking confirmation outbox.

Confirmations are queued by the booking ledger once a booking is committed
and delivered later (after the HTTP response) by ``ConfirmationOutbox.dispatch``.
Delivery is best effort: a failed send is logged and dropped, it never
touches the booking.
"""
from __future__ import annotations

import smtplib
from collections import deque
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Callable, Deque

from jinja2 import Environment, FileSystemLoader, select_autoescape

from gymbook.logger import logger
from gymbook.settings import settings

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

templates = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class BookingConfirmation:
    client_name: str
    client_email: str
    client_phone: str
    date: str
    slot_name: str
    slot_time: str
    cancel_token: str
    site_url: str

    @property
    def cancel_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/cancel/{self.cancel_token}"


def render_confirmation(confirmation: BookingConfirmation) -> str:
    return templates.get_template("email/booking_confirmation.html").render(
        confirmation=confirmation
    )


def send_confirmation_email(confirmation: BookingConfirmation) -> bool:
    """
    Sends the booking confirmation over SMTP.
    Returns: True if the message was handed to the server, False otherwise.
    """
    if not settings.notifications_enabled:
        logger.info("Email notifications are disabled.")
        return False

    if not confirmation.client_email:
        return False

    if not settings.smtp_username or not settings.smtp_password:
        logger.error("SMTP credentials missing, confirmation not sent.")
        return False

    msg = MIMEMultipart("alternative")
    msg["From"] = settings.email_from
    msg["To"] = confirmation.client_email
    msg["Subject"] = f"Booking Confirmed - {confirmation.slot_name} on {confirmation.date}"
    msg.attach(MIMEText(render_confirmation(confirmation), "html"))

    server = smtplib.SMTP(settings.smtp_server, settings.smtp_port, timeout=10)
    try:
        server.starttls()
        server.login(settings.smtp_username, settings.smtp_password)
        server.sendmail(settings.smtp_username, confirmation.client_email, msg.as_string())
    finally:
        server.quit()

    logger.info(f"Confirmation sent to {confirmation.client_email}")
    return True


class ConfirmationOutbox:
    def __init__(self, sender: Callable[[BookingConfirmation], bool] = send_confirmation_email):
        self._sender = sender
        self._pending: Deque[BookingConfirmation] = deque()

    def enqueue(self, confirmation: BookingConfirmation) -> None:
        self._pending.append(confirmation)

    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self) -> int:
        """Drain the queue once. Returns how many confirmations were delivered."""
        delivered = 0
        while True:
            try:
                confirmation = self._pending.popleft()
            except IndexError:
                break
            try:
                if self._sender(confirmation):
                    delivered += 1
                else:
                    logger.warning(f"Confirmation for {confirmation.client_email} was not sent")
            except Exception as e:
                logger.error(f"Failed to send confirmation to {confirmation.client_email}: {e}")
        return delivered


outbox = ConfirmationOutbox()
