"""Guest notifications.

Delivery is fire-and-forget: ``notify`` never raises. A failed email is
logged and the booking operation that triggered it stands.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from .config import settings

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    WAITLISTED = "waitlisted"
    PROMOTED = "promoted"
    UPDATED = "updated"
    CANCELLED = "cancelled"


SUBJECTS = {
    NotificationKind.CONFIRMED: "Reservation Confirmed",
    NotificationKind.PENDING: "Reservation Request Received",
    NotificationKind.WAITLISTED: "You're on the Waitlist",
    NotificationKind.PROMOTED: "Good News - Your Table is Confirmed",
    NotificationKind.UPDATED: "Reservation Updated",
    NotificationKind.CANCELLED: "Reservation Cancelled",
}

OPENERS = {
    NotificationKind.CONFIRMED: "Your reservation has been confirmed!",
    NotificationKind.PENDING: "We've received your reservation request. Our team will review it and get back to you shortly.",
    NotificationKind.WAITLISTED: "The time you requested is currently full, so we've added you to the waitlist. We'll email you if a table opens up.",
    NotificationKind.PROMOTED: "A table has opened up and your waitlist request is now a confirmed reservation!",
    NotificationKind.UPDATED: "Your reservation changes have been received and are pending review.",
    NotificationKind.CANCELLED: "Your reservation has been cancelled.",
}


def render(kind: NotificationKind, payload: Dict[str, Any], frontend_url: str) -> Dict[str, str]:
    """Build subject and plain-text body for a notification."""
    party_size = payload.get("party_size")
    people = "person" if party_size == 1 else "people"
    lines = [
        f"Dear {payload.get('guest_name', 'Guest')},",
        "",
        OPENERS[kind],
        "",
        f"Date: {payload.get('date')}",
        f"Time: {payload.get('time')}",
        f"Party Size: {party_size} {people}",
    ]
    token = payload.get("cancel_token")
    if token and kind != NotificationKind.CANCELLED:
        lines += ["", f"Manage your reservation (edit or cancel): {frontend_url}/manage/{token}"]
    lines += ["", "Thank you for choosing our restaurant!"]
    return {"subject": SUBJECTS[kind], "text": "\n".join(lines)}


class Notifier:
    """Interface for guest-facing notifications."""

    async def notify(self, kind: NotificationKind, recipient: Optional[str], payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class EmailNotifier(Notifier):
    """
    Sends plain-text email through the Resend HTTP API.

    Falls back to logging the body when no API key is configured.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        from_email: Optional[str] = None,
        frontend_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.api_url = api_url or settings.resend_api_url
        self.from_email = from_email or settings.from_email
        self.frontend_url = frontend_url or settings.frontend_url
        self.client = client

    async def notify(self, kind: NotificationKind, recipient: Optional[str], payload: Dict[str, Any]) -> None:
        if not recipient:
            logger.info(f"[EMAIL] No recipient for {kind.value} notification, skipping")
            return

        try:
            message = render(kind, payload, self.frontend_url)
            logger.info(f"[EMAIL] Sending {kind.value} to {recipient}: {message['subject']}")

            if not self.api_key:
                logger.info(f"[EMAIL] Resend API key not configured, body:\n{message['text']}")
                return

            await self._send(recipient, message)
            logger.info(f"[EMAIL] Sent {kind.value} to {recipient}")
        except Exception:
            logger.exception(f"[EMAIL] Failed to send {kind.value} to {recipient}")

    async def _send(self, recipient: str, message: Dict[str, str]) -> None:
        body = {
            "from": self.from_email,
            "to": recipient,
            "subject": message["subject"],
            "text": message["text"],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        if self.client is not None:
            response = await self.client.post(self.api_url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(self.api_url, json=body, headers=headers)
        response.raise_for_status()
