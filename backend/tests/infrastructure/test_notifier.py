import base64
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
import resend
from singbox.domain.errors import DependencyUnavailable
from singbox.infrastructure import notifier as notifier_module
from singbox.infrastructure.notifier import ResendNotifier, UnconfiguredNotifier, build_confirmation_email
from singbox.models import Reservation, ReservationStatus


def _reservation(email: str | None = "ada@example.com") -> Reservation:
    starts = datetime(2025, 1, 15, 17, 0)
    return Reservation(
        id=42,
        customer_email=email,
        box_id=3,
        day=starts.date(),
        starts_at=starts,
        ends_at=starts + timedelta(hours=1),
        duration_minutes=60,
        price=Decimal("10"),
        status=ReservationStatus.CONFIRMED,
    )


def test_confirmation_email_shows_local_time_and_inline_qr() -> None:
    params = build_confirmation_email(_reservation(), sender="Singbox <hi@singbox.test>", tz_offset_minutes=-60)

    assert params["to"] == "ada@example.com"
    assert "Box 3" in params["subject"]
    assert "15/01/2025 18:00" in params["html"]
    assert "15/01/2025 19:00" in params["html"]
    attachment = params["attachments"][0]
    assert f"cid:{attachment['content_id']}" in params["html"]
    assert base64.b64decode(attachment["content"]).startswith(b"\x89PNG")


@pytest.mark.asyncio
async def test_resend_notifier_sends(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[dict[str, Any]] = []

    def fake_send(params: dict[str, Any]) -> dict[str, str]:
        sent.append(params)
        return {"id": "email_1"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    monkeypatch.setattr(notifier_module, "qr_png_base64", lambda text: "cXI=")

    await ResendNotifier("re_test", sender="hi@singbox.test").send(_reservation())

    assert len(sent) == 1
    assert sent[0]["from"] == "hi@singbox.test"
    assert resend.api_key == "re_test"


@pytest.mark.asyncio
async def test_resend_notifier_skips_missing_email(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_send(params: dict[str, Any]) -> None:  # pragma: no cover
        raise AssertionError("should not send")

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    await ResendNotifier("re_test", sender="hi@singbox.test").send(_reservation(email=None))


@pytest.mark.asyncio
async def test_unconfigured_notifier_raises() -> None:
    with pytest.raises(DependencyUnavailable):
        await UnconfiguredNotifier().send(_reservation())
