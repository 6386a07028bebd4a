from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from ..config import Settings
from ..domain.errors import ConflictError, PaymentNotVerified, ValidationError
from ..domain.gateways import PAYMENT_SUCCEEDED, Notifier, PaymentInfo, Payments
from ..domain.pricing import PriceQuote, PricingEngine, PromoSnapshot, PromoType, normalize_code
from ..domain.repositories import (
    LoyaltyRedemption,
    LoyaltyRepository,
    NewReservation,
    PromoRepository,
    ReservationRepository,
)
from ..domain.services import ensure_cart_disjoint
from ..domain.timeslots import CartItem, SlotRequest, TimeSlotResolver
from ..models import PromoCode, Reservation
from ..utils.time import local_day_bounds_utc, to_utc_naive

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task[Any]] = set()


@dataclass(frozen=True)
class WorkflowPolicy:
    resolver: TimeSlotResolver
    pricing: PricingEngine
    loyalty_points_per_slot: int = 10
    loyalty_redeem_cost: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkflowPolicy":
        return cls(
            resolver=TimeSlotResolver(
                session_minutes=settings.session_minutes,
                default_tz_offset_minutes=settings.default_tz_offset_minutes,
            ),
            pricing=PricingEngine(default_unit_price=settings.default_slot_price),
            loyalty_points_per_slot=settings.loyalty_points_per_slot,
            loyalty_redeem_cost=settings.loyalty_redeem_cost,
        )


@dataclass(frozen=True)
class Customer:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        name = " ".join(part.strip() for part in (self.first_name, self.last_name) if part and part.strip())
        return name or None


@dataclass(frozen=True)
class PricedItem:
    item: CartItem
    price: Decimal


@dataclass(frozen=True)
class IntentOutcome:
    quote: PriceQuote
    payment: Optional[PaymentInfo]


@dataclass(frozen=True)
class ConfirmRequest:
    slots: Sequence[SlotRequest]
    customer: Customer
    promo_code: Optional[str] = None
    payment_reference: Optional[str] = None
    loyalty_used: bool = False
    is_free: bool = False
    declared_total: Any = None
    user_id: Optional[int] = None


@dataclass
class ConfirmOutcome:
    reservations: list[Reservation]
    quote: Optional[PriceQuote]
    replayed: bool = False
    notifications: Optional[asyncio.Task[Any]] = field(default=None, repr=False)


def resolve_cart(resolver: TimeSlotResolver, slots: Sequence[SlotRequest]) -> list[CartItem]:
    if not slots:
        raise ValidationError("cart is empty")
    return [resolver.resolve_item(slot) for slot in slots]


async def ensure_available(res_repo: ReservationRepository, items: Sequence[CartItem]) -> None:
    """Reject the whole cart on the first overlapping item; checks run one at a time."""
    ensure_cart_disjoint(items)
    for item in items:
        if await res_repo.has_conflict(item.resource_id, item.range.start, item.range.end):
            raise ConflictError(
                f"box {item.resource_id} is already booked at {item.range.start.isoformat()}; "
                "choose another time or another box"
            )


def promo_snapshot(row: PromoCode) -> PromoSnapshot:
    return PromoSnapshot(
        id=row.id,
        code=row.code,
        type=row.type,
        value=Decimal(row.value),
        is_active=row.is_active,
        valid_from=row.valid_from,
        valid_to=row.valid_to,
        max_uses=row.max_uses,
        used_count=row.used_count or 0,
    )


async def quote_cart(
    promo_repo: PromoRepository,
    *,
    pricing: PricingEngine,
    items: Sequence[CartItem],
    promo_code: Optional[str],
    loyalty_free: bool,
    today: date,
) -> PriceQuote:
    code = normalize_code(promo_code)
    promo: Optional[PromoSnapshot] = None
    if code is not None:
        row = await promo_repo.get_by_code(code)
        promo = promo_snapshot(row) if row is not None else None
    return pricing.compute_total(
        [pricing.unit_price(item.price) for item in items],
        promo,
        promo_code=code,
        loyalty_free=loyalty_free,
        today=today,
    )


async def verify_cart(
    res_repo: ReservationRepository,
    *,
    policy: WorkflowPolicy,
    slots: Sequence[SlotRequest],
) -> list[PricedItem]:
    items = resolve_cart(policy.resolver, slots)
    await ensure_available(res_repo, items)
    return [PricedItem(item=item, price=policy.pricing.unit_price(item.price)) for item in items]


async def _ensure_redeemable(
    loyalty_repo: LoyaltyRepository,
    *,
    user_id: Optional[int],
    cost: int,
) -> None:
    if user_id is None:
        raise ValidationError("a loyalty session requires a signed-in customer")
    points = await loyalty_repo.get_points(user_id)
    if points < cost:
        raise ValidationError(f"not enough loyalty points ({points}/{cost})")


async def create_payment_intent(
    res_repo: ReservationRepository,
    promo_repo: PromoRepository,
    loyalty_repo: LoyaltyRepository,
    payments: Payments,
    *,
    policy: WorkflowPolicy,
    slots: Sequence[SlotRequest],
    customer: Customer,
    promo_code: Optional[str],
    loyalty_used: bool,
    user_id: Optional[int],
    today: date,
) -> IntentOutcome:
    items = resolve_cart(policy.resolver, slots)
    if loyalty_used:
        await _ensure_redeemable(loyalty_repo, user_id=user_id, cost=policy.loyalty_redeem_cost)
    await ensure_available(res_repo, items)

    quote = await quote_cart(
        promo_repo,
        pricing=policy.pricing,
        items=items,
        promo_code=promo_code,
        loyalty_free=loyalty_used,
        today=today,
    )
    if quote.is_free:
        logger.info("cart of %d slot(s) is free, no payment created", len(items))
        return IntentOutcome(quote=quote, payment=None)

    metadata = {
        "customer_email": customer.email or "",
        "customer_name": customer.full_name or "",
        "slots": str(len(items)),
        "boxes": ",".join(str(item.resource_id) for item in items),
        "total_before": str(quote.before),
        "total_after": str(quote.after),
        "promo_code": quote.applied_promo.code if quote.applied_promo else "",
    }
    payment = await payments.authorize(quote.amount_cents, metadata)
    return IntentOutcome(quote=quote, payment=payment)


def _declared_total_matches(declared: Any, after: Decimal) -> bool:
    try:
        return Decimal(str(declared)) == after
    except (InvalidOperation, ValueError):
        return False


def _replay_matches(existing: Sequence[Reservation], items: Sequence[CartItem], customer: Customer) -> bool:
    """A retried confirm must come from the same customer for the same cart."""
    email = (customer.email or "").strip().lower()
    if any((row.customer_email or "").strip().lower() != email for row in existing):
        return False
    stored = sorted((row.box_id, row.starts_at) for row in existing)
    requested = sorted((item.resource_id, to_utc_naive(item.range.start)) for item in items)
    return stored == requested


async def _verify_payment(payments: Payments, reference: str, quote: PriceQuote) -> None:
    payment = await payments.get_status(reference)
    logger.info("payment %s status %s", reference, payment.status)
    if payment.status != PAYMENT_SUCCEEDED:
        raise PaymentNotVerified(f"payment {reference} is {payment.status}, not {PAYMENT_SUCCEEDED}")
    if payment.amount_cents != quote.amount_cents:
        raise PaymentNotVerified(
            f"payment {reference} is for {payment.amount_cents} cents, cart total is {quote.amount_cents}"
        )


async def confirm_reservation(
    res_repo: ReservationRepository,
    promo_repo: PromoRepository,
    loyalty_repo: LoyaltyRepository,
    payments: Payments,
    notifier: Notifier,
    *,
    policy: WorkflowPolicy,
    request: ConfirmRequest,
    today: date,
) -> ConfirmOutcome:
    items = resolve_cart(policy.resolver, request.slots)
    if not request.customer.email:
        raise ValidationError("customer email is required")
    if not request.payment_reference and not (request.is_free or request.loyalty_used):
        raise ValidationError("payment reference is required")
    if request.loyalty_used and request.user_id is None:
        raise ValidationError("a loyalty session requires a signed-in customer")

    quote = await quote_cart(
        promo_repo,
        pricing=policy.pricing,
        items=items,
        promo_code=request.promo_code,
        loyalty_free=request.loyalty_used,
        today=today,
    )
    if request.declared_total is not None and not _declared_total_matches(request.declared_total, quote.after):
        logger.warning("client declared total %r, server computed %s", request.declared_total, quote.after)

    payment_reference: Optional[str] = None
    if not quote.is_free:
        if not request.payment_reference:
            raise PaymentNotVerified("cart total is not zero, a payment is required")
        payment_reference = request.payment_reference

        existing = await res_repo.list_by_payment_reference(payment_reference)
        if existing:
            if not _replay_matches(existing, items, request.customer):
                raise ValidationError(f"payment {payment_reference} was used for another booking")
            logger.info("payment %s already confirmed, returning %d reservation(s)", payment_reference, len(existing))
            return ConfirmOutcome(reservations=existing, quote=quote, replayed=True)

        await _verify_payment(payments, payment_reference, quote)

    await ensure_available(res_repo, items)

    rows = [
        NewReservation(
            item=item,
            price=policy.pricing.unit_price(),
            customer_name=request.customer.full_name,
            customer_email=request.customer.email,
            user_id=request.user_id,
            payment_reference=payment_reference,
        )
        for item in items
    ]
    redemption = None
    if request.loyalty_used and request.user_id is not None:
        redemption = LoyaltyRedemption(user_id=request.user_id, points=policy.loyalty_redeem_cost)
    reservations = await res_repo.insert_batch(rows, redemption=redemption)
    logger.info(
        "stored %d reservation(s) %s for %s",
        len(reservations),
        [r.id for r in reservations],
        request.customer.email,
    )

    notifications = dispatch_notifications(notifier, reservations)
    # Bookkeeping must finish even if the client goes away.
    await asyncio.shield(
        _record_bookkeeping(
            promo_repo,
            loyalty_repo,
            policy=policy,
            request=request,
            quote=quote,
            reservations=reservations,
            payment_reference=payment_reference,
        )
    )
    return ConfirmOutcome(reservations=reservations, quote=quote, notifications=notifications)


async def _notify_all(notifier: Notifier, reservations: Sequence[Reservation]) -> list[Any]:
    results = await asyncio.gather(*(notifier.send(r) for r in reservations), return_exceptions=True)
    for reservation, result in zip(reservations, results):
        if isinstance(result, BaseException):
            logger.error(
                "confirmation email for reservation %s failed: %s",
                reservation.id,
                result,
                exc_info=(type(result), result, result.__traceback__),
            )
    return results


def dispatch_notifications(notifier: Notifier, reservations: Sequence[Reservation]) -> asyncio.Task[Any]:
    """Send one confirmation per reservation in the background; failures are only logged."""
    task = asyncio.create_task(_notify_all(notifier, list(reservations)))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def _is_free_booking(quote: PriceQuote) -> bool:
    promo_free = quote.applied_promo is not None and quote.applied_promo.type == PromoType.FREE
    return quote.loyalty_free or promo_free or quote.is_free


async def _record_bookkeeping(
    promo_repo: PromoRepository,
    loyalty_repo: LoyaltyRepository,
    *,
    policy: WorkflowPolicy,
    request: ConfirmRequest,
    quote: PriceQuote,
    reservations: Sequence[Reservation],
    payment_reference: Optional[str],
) -> None:
    if request.user_id is not None and not _is_free_booking(quote):
        points = policy.loyalty_points_per_slot * len(reservations)
        try:
            balance = await loyalty_repo.credit(request.user_id, points)
            logger.info("credited %d loyalty points to user %s (balance %d)", points, request.user_id, balance)
        except Exception:
            logger.exception("loyalty credit failed for user %s", request.user_id)

    promo = quote.applied_promo
    if promo is not None and quote.discount > 0 and not quote.loyalty_free:
        try:
            counted = await promo_repo.record_usage(
                promo.id,
                payment_reference=payment_reference,
                customer_email=request.customer.email,
                discount=quote.discount,
            )
            if not counted:
                logger.warning("promo %s reached its usage limit concurrently", promo.code)
        except Exception:
            logger.exception("promo usage recording failed for %s", promo.code)


async def list_slots(
    res_repo: ReservationRepository,
    *,
    day: date,
    tz_offset_minutes: int,
) -> list[Reservation]:
    start, end = local_day_bounds_utc(day, tz_offset_minutes)
    return await res_repo.list_starting_between(start, end)
