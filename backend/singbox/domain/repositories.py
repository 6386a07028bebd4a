from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from ..models import PromoCode, Reservation
from .timeslots import CartItem


@dataclass(frozen=True)
class NewReservation:
    item: CartItem
    price: Decimal
    customer_name: Optional[str]
    customer_email: Optional[str]
    user_id: Optional[int]
    payment_reference: Optional[str]


@dataclass(frozen=True)
class LoyaltyRedemption:
    user_id: int
    points: int


class ReservationRepository(Protocol):
    async def has_conflict(self, resource_id: int, start: datetime, end: datetime) -> bool: ...

    async def insert_batch(
        self,
        rows: Sequence[NewReservation],
        *,
        redemption: LoyaltyRedemption | None = None,
    ) -> list[Reservation]:
        """Insert all rows in one transaction or none.

        Must lock the boxes involved, re-check every row for overlaps and
        debit ``redemption`` inside the same transaction.
        """
        ...

    async def list_by_payment_reference(self, payment_reference: str) -> list[Reservation]: ...

    async def list_starting_between(self, start: datetime, end: datetime) -> list[Reservation]: ...

    async def get(self, reservation_id: int) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: int) -> Reservation | None: ...

    async def save(self, reservation: Reservation) -> Reservation: ...


class PromoRepository(Protocol):
    async def get_by_code(self, code: str) -> PromoCode | None: ...

    async def record_usage(
        self,
        promo_id: int,
        *,
        payment_reference: str | None,
        customer_email: str | None,
        discount: Decimal,
    ) -> bool:
        """Log the usage and bump ``used_count`` unless ``max_uses`` is reached."""
        ...


class LoyaltyRepository(Protocol):
    async def get_points(self, user_id: int) -> int: ...

    async def credit(self, user_id: int, points: int) -> int: ...
