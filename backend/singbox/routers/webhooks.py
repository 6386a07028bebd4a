import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ..config import Settings, get_settings
from ..domain.errors import ValidationError
from ..infrastructure.payments import construct_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    settings: Settings = Depends(get_settings),
) -> dict[str, bool]:
    if not settings.stripe_webhook_secret:
        logger.error("webhook received but STRIPE_WEBHOOK_SECRET is not set")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="webhook not configured")

    body = await request.body()
    try:
        event = construct_webhook_event(body, stripe_signature, settings.stripe_webhook_secret)
    except ValidationError as exc:
        logger.warning("rejected webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid signature")

    intent = event["data"]["object"]
    if event["type"] == "payment_intent.succeeded":
        logger.info("payment %s succeeded (%s cents)", intent["id"], intent["amount"])
    elif event["type"] == "payment_intent.payment_failed":
        logger.warning("payment %s failed", intent["id"])
    else:
        logger.debug("ignoring webhook event %s", event["type"])
    return {"received": True}
