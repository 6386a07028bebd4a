from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


class PromoType(StrEnum):
    PERCENT = "percent"
    FIXED = "fixed"
    FREE = "free"


@dataclass(frozen=True)
class PromoSnapshot:
    id: int
    code: str
    type: str
    value: Decimal
    is_active: bool
    valid_from: Optional[date]
    valid_to: Optional[date]
    max_uses: Optional[int]
    used_count: int


@dataclass(frozen=True)
class PriceQuote:
    before: Decimal
    after: Decimal
    discount: Decimal
    applied_promo: Optional[PromoSnapshot] = None
    promo_reason: Optional[str] = None
    loyalty_free: bool = False

    @property
    def is_free(self) -> bool:
        return self.after <= ZERO

    @property
    def amount_cents(self) -> int:
        return to_cents(self.after)


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    cleaned = code.strip().upper()
    return cleaned or None


def promo_rejection(promo: Optional[PromoSnapshot], today: date) -> Optional[str]:
    """Return why a promo cannot be applied today, or None when it can."""
    if promo is None:
        return "not found"
    if not promo.is_active:
        return "inactive"
    if promo.valid_from is not None and today < promo.valid_from:
        return "not yet valid"
    if promo.valid_to is not None and today > promo.valid_to:
        return "expired"
    if promo.max_uses is not None and promo.used_count >= promo.max_uses:
        return "usage limit reached"
    return None


def promo_discount(promo: PromoSnapshot, before: Decimal) -> Decimal:
    if promo.type == PromoType.PERCENT:
        return (before * promo.value / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    if promo.type == PromoType.FIXED:
        return min(before, promo.value)
    if promo.type == PromoType.FREE:
        return before
    logger.warning("promo %s has unknown type %r, no discount", promo.code, promo.type)
    return ZERO


def _declared_decimal(raw: Any) -> Optional[Decimal]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    return value if value.is_finite() else None


@dataclass(frozen=True)
class PricingEngine:
    default_unit_price: Decimal = Decimal("10")

    def unit_price(self, declared: Any = None) -> Decimal:
        """Server price of one slot. A client-declared price is compared, never charged."""
        if declared is not None and _declared_decimal(declared) != self.default_unit_price:
            logger.warning("client declared slot price %r, charging %s", declared, self.default_unit_price)
        return self.default_unit_price

    def compute_total(
        self,
        prices: Iterable[Decimal],
        promo: Optional[PromoSnapshot] = None,
        *,
        promo_code: Optional[str] = None,
        loyalty_free: bool = False,
        today: date,
    ) -> PriceQuote:
        before = sum(prices, ZERO)
        discount = ZERO
        applied: Optional[PromoSnapshot] = None
        reason: Optional[str] = None

        code = normalize_code(promo_code)
        if code is not None:
            reason = promo_rejection(promo, today)
            if promo is not None and reason is None:
                discount = max(ZERO, min(before, promo_discount(promo, before)))
                applied = promo
            else:
                logger.info("promo code %s not applied: %s", code, reason)

        after = max(ZERO, before - discount)

        if loyalty_free:
            discount = before
            after = ZERO

        return PriceQuote(
            before=before,
            after=after,
            discount=discount,
            applied_promo=applied,
            promo_reason=reason,
            loyalty_free=loyalty_free,
        )
