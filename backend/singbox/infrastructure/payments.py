"""Stripe adapter for the payments capability.

The Stripe SDK is synchronous, so every call runs in a worker thread to keep
the event loop free. No call is retried here; retries are the caller's job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import stripe

from ..domain.errors import DependencyUnavailable, PaymentNotVerified, ValidationError
from ..domain.gateways import PaymentInfo, Payments

logger = logging.getLogger(__name__)


def _to_info(intent: Any) -> PaymentInfo:
    return PaymentInfo(
        reference=intent.id,
        status=intent.status,
        amount_cents=int(intent.amount),
        client_secret=getattr(intent, "client_secret", None),
    )


class StripePayments(Payments):
    def __init__(self, secret_key: str, *, currency: str = "eur") -> None:
        self.secret_key = secret_key
        self.currency = currency

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, api_key=self.secret_key, **kwargs)
        except stripe.InvalidRequestError:
            raise
        except stripe.StripeError as exc:
            logger.error("stripe call %s failed: %s", getattr(fn, "__name__", fn), exc, exc_info=True)
            raise DependencyUnavailable("payment provider unavailable") from exc

    async def authorize(
        self,
        amount_cents: int,
        metadata: dict[str, str],
        *,
        manual_capture: bool = False,
    ) -> PaymentInfo:
        if amount_cents <= 0:
            raise ValidationError(f"invalid payment amount: {amount_cents}")
        try:
            intent = await self._call(
                stripe.PaymentIntent.create,
                amount=amount_cents,
                currency=self.currency,
                metadata=metadata,
                capture_method="manual" if manual_capture else "automatic",
                automatic_payment_methods={"enabled": True},
            )
        except stripe.InvalidRequestError as exc:
            raise ValidationError(f"payment rejected: {exc.user_message or exc}") from exc
        logger.info("created payment intent %s for %s cents", intent.id, amount_cents)
        return _to_info(intent)

    async def get_status(self, reference: str) -> PaymentInfo:
        try:
            intent = await self._call(stripe.PaymentIntent.retrieve, reference)
        except stripe.InvalidRequestError as exc:
            raise PaymentNotVerified(f"unknown payment reference {reference}") from exc
        return _to_info(intent)

    async def capture(self, reference: str, amount_cents: int | None = None) -> PaymentInfo:
        kwargs: dict[str, Any] = {}
        if amount_cents is not None:
            kwargs["amount_to_capture"] = amount_cents
        try:
            intent = await self._call(stripe.PaymentIntent.capture, reference, **kwargs)
        except stripe.InvalidRequestError as exc:
            raise ValidationError(f"cannot capture {reference}: {exc.user_message or exc}") from exc
        return _to_info(intent)

    async def cancel(self, reference: str) -> PaymentInfo:
        try:
            intent = await self._call(stripe.PaymentIntent.cancel, reference)
        except stripe.InvalidRequestError as exc:
            raise ValidationError(f"cannot cancel {reference}: {exc.user_message or exc}") from exc
        return _to_info(intent)


class UnconfiguredPayments(Payments):
    """Stands in when no Stripe key is set; every operation fails loudly."""

    async def authorize(
        self,
        amount_cents: int,
        metadata: dict[str, str],
        *,
        manual_capture: bool = False,
    ) -> PaymentInfo:
        raise DependencyUnavailable("payments are not configured")

    async def get_status(self, reference: str) -> PaymentInfo:
        raise DependencyUnavailable("payments are not configured")

    async def capture(self, reference: str, amount_cents: int | None = None) -> PaymentInfo:
        raise DependencyUnavailable("payments are not configured")

    async def cancel(self, reference: str) -> PaymentInfo:
        raise DependencyUnavailable("payments are not configured")


def construct_webhook_event(payload: bytes, signature: str | None, secret: str) -> Any:
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        raise ValidationError(f"invalid webhook: {exc}") from exc
