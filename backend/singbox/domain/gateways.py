from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ..models import Reservation

PAYMENT_SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class PaymentInfo:
    reference: str
    status: str
    amount_cents: int
    client_secret: Optional[str] = None


class Payments(Protocol):
    async def authorize(
        self,
        amount_cents: int,
        metadata: dict[str, str],
        *,
        manual_capture: bool = False,
    ) -> PaymentInfo: ...

    async def get_status(self, reference: str) -> PaymentInfo: ...

    async def capture(self, reference: str, amount_cents: int | None = None) -> PaymentInfo: ...

    async def cancel(self, reference: str) -> PaymentInfo: ...


class Notifier(Protocol):
    async def send(self, reservation: Reservation) -> None: ...
