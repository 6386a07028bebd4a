import logging
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import async_session
from .domain.gateways import Notifier, Payments
from .infrastructure.notifier import ResendNotifier, UnconfiguredNotifier
from .infrastructure.payments import StripePayments, UnconfiguredPayments
from .infrastructure.repositories import (
    SqlAlchemyLoyaltyRepository,
    SqlAlchemyPromoRepository,
    SqlAlchemyReservationRepository,
)
from .models import User
from .usecases.reservations import WorkflowPolicy
from .utils.auth import bearer_token, decode_access_token

logger = logging.getLogger(__name__)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _resolve_user_id(authorization: Optional[str], session: AsyncSession) -> int:
    token = bearer_token(authorization)
    if token is None:
        raise _unauthorized("Bearer token required")
    settings = get_settings()
    try:
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("Invalid token") from exc

    try:
        found = await session.scalar(select(User.id).where(User.id == user_id))
    except ProgrammingError as exc:
        await session.rollback()
        logger.exception("user lookup failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user store unavailable") from exc
    if found is None:
        raise _unauthorized("Unknown user")
    return user_id


async def get_current_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    return await _resolve_user_id(authorization, session)


async def get_optional_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int | None:
    """Anonymous carts are allowed; a token, when sent, must still be valid."""
    if authorization is None:
        return None
    return await _resolve_user_id(authorization, session)


def get_policy(settings: Settings = Depends(get_settings)) -> WorkflowPolicy:
    return WorkflowPolicy.from_settings(settings)


def get_payments(settings: Settings = Depends(get_settings)) -> Payments:
    if not settings.stripe_secret_key:
        return UnconfiguredPayments()
    return StripePayments(settings.stripe_secret_key, currency=settings.currency)


def get_notifier(settings: Settings = Depends(get_settings)) -> Notifier:
    if not settings.resend_api_key:
        return UnconfiguredNotifier()
    return ResendNotifier(
        settings.resend_api_key,
        sender=settings.mail_from,
        tz_offset_minutes=settings.default_tz_offset_minutes,
    )


async def get_reservation_repo(session: AsyncSession = Depends(get_session)) -> SqlAlchemyReservationRepository:
    return SqlAlchemyReservationRepository(session)


async def get_promo_repo(session: AsyncSession = Depends(get_session)) -> SqlAlchemyPromoRepository:
    return SqlAlchemyPromoRepository(session)


async def get_loyalty_repo(session: AsyncSession = Depends(get_session)) -> SqlAlchemyLoyaltyRepository:
    return SqlAlchemyLoyaltyRepository(session)
