from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .domain.pricing import PriceQuote, PromoSnapshot
from .domain.timeslots import SlotRequest
from .models import DepositStatus, Reservation, ReservationStatus
from .usecases.reservations import Customer, PricedItem
from .utils.time import utc_naive_to_aware


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SlotIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: Optional[str] = None
    hour: Union[int, float, str, None] = None
    start_time: Optional[str] = Field(default=None, validation_alias=AliasChoices("start_time", "startTime"))
    end_time: Optional[str] = Field(default=None, validation_alias=AliasChoices("end_time", "endTime"))
    tz_offset_minutes: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("tzOffsetMinutes", "tz_offset_minutes"),
    )
    price: Any = None
    box: Union[int, float, str, None] = Field(
        default=None,
        validation_alias=AliasChoices("boxId", "box_id", "box", "boxName"),
    )

    def to_domain(self) -> SlotRequest:
        return SlotRequest(
            date=self.date,
            hour=self.hour,
            start_time=self.start_time,
            end_time=self.end_time,
            tz_offset_minutes=self.tz_offset_minutes,
            price=self.price,
            box=self.box,
        )


class CustomerIn(BaseModel):
    first_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("firstName", "first_name", "prenom"))
    last_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("lastName", "last_name", "nom"))
    email: Optional[str] = None

    def to_domain(self) -> Customer:
        return Customer(first_name=self.first_name, last_name=self.last_name, email=self.email)


class VerifyCartRequest(CamelModel):
    items: List[SlotIn]


class CartItemRead(CamelModel):
    date: dt.date
    start: dt.datetime
    end: dt.datetime
    duration: int
    resource_id: int
    price: Decimal

    @classmethod
    def from_priced(cls, priced: PricedItem) -> "CartItemRead":
        return cls(
            date=priced.item.range.date,
            start=priced.item.range.start,
            end=priced.item.range.end,
            duration=priced.item.range.duration,
            resource_id=priced.item.resource_id,
            price=priced.price,
        )


class VerifyCartResponse(CamelModel):
    items: List[CartItemRead]


class PromoRead(CamelModel):
    code: str
    type: str
    value: Decimal

    @classmethod
    def from_snapshot(cls, promo: Optional[PromoSnapshot]) -> Optional["PromoRead"]:
        if promo is None:
            return None
        return cls(code=promo.code, type=promo.type, value=promo.value)


class PaymentIntentRequest(CamelModel):
    cart: List[SlotIn] = Field(validation_alias=AliasChoices("cart", "panier"))
    customer: CustomerIn = Field(default_factory=CustomerIn)
    promo_code: Optional[str] = None
    loyalty_used: bool = False


class PaymentIntentResponse(CamelModel):
    payment_reference: Optional[str] = None
    client_secret: Optional[str] = None
    total_before: Decimal
    total_after: Decimal
    discount: Decimal
    promo: Optional[PromoRead] = None
    is_free: bool = False

    @classmethod
    def from_quote(
        cls,
        quote: PriceQuote,
        *,
        payment_reference: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> "PaymentIntentResponse":
        return cls(
            payment_reference=payment_reference,
            client_secret=client_secret,
            total_before=quote.before,
            total_after=quote.after,
            discount=quote.discount,
            promo=PromoRead.from_snapshot(quote.applied_promo),
            is_free=quote.is_free,
        )


class ConfirmReservationRequest(CamelModel):
    cart: List[SlotIn] = Field(validation_alias=AliasChoices("cart", "panier"))
    customer: CustomerIn = Field(default_factory=CustomerIn)
    promo_code: Optional[str] = None
    payment_reference: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("paymentReference", "payment_reference", "paymentIntentId"),
    )
    loyalty_used: bool = False
    is_free: bool = False
    total_after: Any = None


class ReservationRead(CamelModel):
    id: int
    customer_name: Optional[str]
    customer_email: Optional[str]
    resource_id: int
    date: dt.date
    start: dt.datetime
    end: dt.datetime
    duration: int
    price: Decimal
    status: ReservationStatus
    deposit_status: Optional[DepositStatus] = None

    @classmethod
    def from_db(cls, reservation: Reservation) -> "ReservationRead":
        return cls(
            id=reservation.id,
            customer_name=reservation.customer_name,
            customer_email=reservation.customer_email,
            resource_id=reservation.box_id,
            date=reservation.day,
            start=utc_naive_to_aware(reservation.starts_at),
            end=utc_naive_to_aware(reservation.ends_at),
            duration=reservation.duration_minutes,
            price=reservation.price,
            status=reservation.status,
            deposit_status=reservation.deposit_status,
        )


class ConfirmReservationResponse(CamelModel):
    status: Literal["ok"] = "ok"
    reservations: List[ReservationRead]
    promo: Optional[PromoRead] = None
    replayed: bool = False


class SlotReservation(CamelModel):
    id: int
    resource_id: int
    start: dt.datetime
    end: dt.datetime

    @classmethod
    def from_db(cls, reservation: Reservation) -> "SlotReservation":
        return cls(
            id=reservation.id,
            resource_id=reservation.box_id,
            start=utc_naive_to_aware(reservation.starts_at),
            end=utc_naive_to_aware(reservation.ends_at),
        )


class SlotsResponse(CamelModel):
    reservations: List[SlotReservation]


class AccessCheckResponse(CamelModel):
    valid: bool
    access: bool
    reason: str
    reservation: ReservationRead


class DepositAuthorizeRequest(CamelModel):
    reservation_id: int = Field(ge=1)
    amount: Decimal = Field(gt=0)


class DepositCaptureRequest(CamelModel):
    reservation_id: int = Field(ge=1)
    amount: Optional[Decimal] = Field(default=None, gt=0)


class DepositCancelRequest(CamelModel):
    reservation_id: int = Field(ge=1)


class DepositRead(CamelModel):
    reservation_id: int
    deposit_status: Optional[DepositStatus]
    payment_reference: Optional[str]
    client_secret: Optional[str] = None


class LoyaltyRead(CamelModel):
    user_id: int
    points: int
    redeem_cost: int
    can_redeem: bool
