from __future__ import annotations

import asyncio
import base64
import io
import logging
from datetime import timedelta
from typing import Any

import qrcode
import resend

from ..domain.errors import DependencyUnavailable
from ..domain.gateways import Notifier
from ..models import Reservation

logger = logging.getLogger(__name__)

QR_CONTENT_ID = "qrimage-singbox"


def qr_png_base64(text: str) -> str:
    img = qrcode.make(text)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def build_confirmation_email(reservation: Reservation, *, sender: str, tz_offset_minutes: int = 0) -> dict[str, Any]:
    """Build the Resend payload: summary plus the door QR code inline."""
    local_shift = timedelta(minutes=tz_offset_minutes)
    start = (reservation.starts_at - local_shift).strftime("%d/%m/%Y %H:%M")
    end = (reservation.ends_at - local_shift).strftime("%d/%m/%Y %H:%M")
    html = (
        "<p>Hello,</p>"
        "<p>Your <strong>Singbox</strong> reservation is confirmed.</p>"
        "<ul>"
        f"<li>Box: <strong>{reservation.box_id}</strong></li>"
        f"<li>Start: <strong>{start}</strong></li>"
        f"<li>End: <strong>{end}</strong></li>"
        "</ul>"
        "<p>Show this QR code at the door:</p>"
        f'<p><img src="cid:{QR_CONTENT_ID}" alt="Singbox QR code" /></p>'
        "<p>See you soon at Singbox!</p>"
    )
    return {
        "from": sender,
        "to": reservation.customer_email,
        "subject": f"Your Singbox reservation - Box {reservation.box_id}",
        "html": html,
        "attachments": [
            {
                "filename": "qr-reservation.png",
                "content": qr_png_base64(str(reservation.id)),
                "content_type": "image/png",
                "content_id": QR_CONTENT_ID,
            }
        ],
    }


class ResendNotifier(Notifier):
    def __init__(self, api_key: str, *, sender: str, tz_offset_minutes: int = 0) -> None:
        self.api_key = api_key
        self.sender = sender
        self.tz_offset_minutes = tz_offset_minutes

    async def send(self, reservation: Reservation) -> None:
        if not reservation.customer_email:
            logger.warning("reservation %s has no email address, confirmation not sent", reservation.id)
            return
        params = build_confirmation_email(
            reservation,
            sender=self.sender,
            tz_offset_minutes=self.tz_offset_minutes,
        )
        await asyncio.to_thread(self._send, params)
        logger.info("confirmation sent to %s for reservation %s", reservation.customer_email, reservation.id)

    def _send(self, params: dict[str, Any]) -> Any:
        resend.api_key = self.api_key
        return resend.Emails.send(params)


class UnconfiguredNotifier(Notifier):
    async def send(self, reservation: Reservation) -> None:
        raise DependencyUnavailable("mail is not configured")
