import logging
from datetime import date
from decimal import Decimal

import pytest
from singbox.domain.pricing import PricingEngine, PromoSnapshot, normalize_code, promo_rejection, to_cents

TODAY = date(2025, 6, 1)


def _promo(
    code: str = "HALF",
    type_: str = "percent",
    value: str = "50",
    *,
    is_active: bool = True,
    valid_from: date | None = None,
    valid_to: date | None = None,
    max_uses: int | None = None,
    used_count: int = 0,
) -> PromoSnapshot:
    return PromoSnapshot(
        id=1,
        code=code,
        type=type_,
        value=Decimal(value),
        is_active=is_active,
        valid_from=valid_from,
        valid_to=valid_to,
        max_uses=max_uses,
        used_count=used_count,
    )


def test_percent_promo_halves_total() -> None:
    engine = PricingEngine(default_unit_price=Decimal("10"))
    quote = engine.compute_total([Decimal("10"), Decimal("10")], _promo(), promo_code="half", today=TODAY)
    assert quote.before == Decimal("20")
    assert quote.discount == Decimal("10.00")
    assert quote.after == Decimal("10.00")
    assert quote.applied_promo is not None
    assert quote.amount_cents == 1000


def test_percent_promo_rounds_half_up_to_cents() -> None:
    engine = PricingEngine()
    quote = engine.compute_total([Decimal("0.05")], _promo(value="50"), promo_code="HALF", today=TODAY)
    assert quote.discount == Decimal("0.03")
    assert quote.after == Decimal("0.02")


def test_fixed_promo_is_capped_at_subtotal() -> None:
    engine = PricingEngine()
    quote = engine.compute_total([Decimal("10")], _promo(type_="fixed", value="25"), promo_code="HALF", today=TODAY)
    assert quote.discount == Decimal("10")
    assert quote.after == Decimal("0")
    assert quote.is_free


def test_free_promo_zeroes_total() -> None:
    engine = PricingEngine()
    quote = engine.compute_total([Decimal("12"), Decimal("8")], _promo(type_="free", value="0"), promo_code="HALF", today=TODAY)
    assert quote.discount == Decimal("20")
    assert quote.after == Decimal("0")
    assert quote.is_free


def test_unknown_promo_type_gives_no_discount() -> None:
    engine = PricingEngine()
    quote = engine.compute_total([Decimal("10")], _promo(type_="bogo"), promo_code="HALF", today=TODAY)
    assert quote.discount == Decimal("0")
    assert quote.after == Decimal("10")


@pytest.mark.parametrize(
    "promo, reason",
    [
        (None, "not found"),
        (_promo(is_active=False), "inactive"),
        (_promo(valid_from=date(2025, 6, 2)), "not yet valid"),
        (_promo(valid_to=date(2025, 5, 31)), "expired"),
        (_promo(max_uses=3, used_count=3), "usage limit reached"),
    ],
)
def test_rejected_promo_leaves_total_unchanged(promo: PromoSnapshot | None, reason: str) -> None:
    engine = PricingEngine()
    quote = engine.compute_total([Decimal("10"), Decimal("10")], promo, promo_code="HALF", today=TODAY)
    assert quote.after == quote.before == Decimal("20")
    assert quote.discount == Decimal("0")
    assert quote.applied_promo is None
    assert quote.promo_reason == reason


def test_validity_window_is_inclusive() -> None:
    promo = _promo(valid_from=TODAY, valid_to=TODAY)
    assert promo_rejection(promo, TODAY) is None


def test_loyalty_override_applies_last() -> None:
    engine = PricingEngine()
    quote = engine.compute_total([Decimal("10"), Decimal("10")], _promo(), promo_code="HALF", loyalty_free=True, today=TODAY)
    assert quote.before == Decimal("20")
    assert quote.discount == Decimal("20")
    assert quote.after == Decimal("0")
    assert quote.loyalty_free
    assert quote.amount_cents == 0


@pytest.mark.parametrize("declared", [None, "15", 0, "0.01", "-3", "abc", "1e30", "sNaN", True])
def test_unit_price_ignores_declared_price(declared: object) -> None:
    engine = PricingEngine(default_unit_price=Decimal("15"))
    assert engine.unit_price(declared) == Decimal("15")


def test_mismatched_declared_price_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    engine = PricingEngine(default_unit_price=Decimal("10"))
    with caplog.at_level(logging.WARNING, logger="singbox.domain.pricing"):
        engine.unit_price("10.00")
        assert caplog.records == []
        engine.unit_price(0)
    assert "client declared slot price 0" in caplog.text


def test_blank_code_is_ignored() -> None:
    engine = PricingEngine()
    quote = engine.compute_total([Decimal("10")], None, promo_code="   ", today=TODAY)
    assert quote.promo_reason is None
    assert quote.after == Decimal("10")


def test_normalize_code() -> None:
    assert normalize_code("  half ") == "HALF"
    assert normalize_code("") is None
    assert normalize_code(None) is None


def test_to_cents_rounds_half_up() -> None:
    assert to_cents(Decimal("10.005")) == 1001
    assert to_cents(Decimal("0")) == 0
