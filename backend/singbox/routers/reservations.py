import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..config import Settings, get_settings
from ..deps import (
    get_loyalty_repo,
    get_notifier,
    get_optional_user_id,
    get_payments,
    get_policy,
    get_promo_repo,
    get_reservation_repo,
)
from ..domain.errors import (
    ConflictError,
    DependencyUnavailable,
    PaymentNotVerified,
    PersistenceFailed,
    ValidationError,
)
from ..domain.gateways import Notifier, Payments
from ..domain.repositories import LoyaltyRepository, PromoRepository, ReservationRepository
from ..schemas import (
    CartItemRead,
    ConfirmReservationRequest,
    ConfirmReservationResponse,
    PromoRead,
    ReservationRead,
    SlotReservation,
    SlotsResponse,
    VerifyCartRequest,
    VerifyCartResponse,
)
from ..usecases import reservations as reservation_usecase
from ..usecases.reservations import ConfirmRequest, WorkflowPolicy
from ..utils.audit_log import emit_audit_log
from ..utils.time import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("/verify-cart", response_model=VerifyCartResponse)
async def verify_cart(
    payload: VerifyCartRequest,
    res_repo: ReservationRepository = Depends(get_reservation_repo),
    policy: WorkflowPolicy = Depends(get_policy),
) -> VerifyCartResponse:
    try:
        priced = await reservation_usecase.verify_cart(
            res_repo,
            policy=policy,
            slots=[slot.to_domain() for slot in payload.items],
        )
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return VerifyCartResponse(items=[CartItemRead.from_priced(p) for p in priced])


@router.post("/confirm", response_model=ConfirmReservationResponse)
async def confirm_reservation(
    payload: ConfirmReservationRequest,
    res_repo: ReservationRepository = Depends(get_reservation_repo),
    promo_repo: PromoRepository = Depends(get_promo_repo),
    loyalty_repo: LoyaltyRepository = Depends(get_loyalty_repo),
    payments: Payments = Depends(get_payments),
    notifier: Notifier = Depends(get_notifier),
    policy: WorkflowPolicy = Depends(get_policy),
    user_id: Optional[int] = Depends(get_optional_user_id),
) -> ConfirmReservationResponse:
    request = ConfirmRequest(
        slots=[slot.to_domain() for slot in payload.cart],
        customer=payload.customer.to_domain(),
        promo_code=payload.promo_code,
        payment_reference=payload.payment_reference,
        loyalty_used=payload.loyalty_used,
        is_free=payload.is_free,
        declared_total=payload.total_after,
        user_id=user_id,
    )
    try:
        outcome = await reservation_usecase.confirm_reservation(
            res_repo,
            promo_repo,
            loyalty_repo,
            payments,
            notifier,
            policy=policy,
            request=request,
            today=utc_now().date(),
        )
    except (ValidationError, ConflictError, PaymentNotVerified) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except (DependencyUnavailable, PersistenceFailed) as exc:
        logger.exception("reservation confirmation failed for %s", payload.payment_reference)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))

    if not outcome.replayed:
        for reservation in outcome.reservations:
            try:
                emit_audit_log(
                    action="reservation.created",
                    initiator="customer",
                    reservation_id=reservation.id,
                    box_id=reservation.box_id,
                    user_id=reservation.user_id,
                    status_to=reservation.status,
                    payment_reference=reservation.payment_reference,
                )
            except RuntimeError:
                # The booking is committed and paid for; a lost audit line must not fail it.
                logger.exception("audit log failed for reservation %s", reservation.id)

    return ConfirmReservationResponse(
        reservations=[ReservationRead.from_db(r) for r in outcome.reservations],
        promo=PromoRead.from_snapshot(outcome.quote.applied_promo) if outcome.quote else None,
        replayed=outcome.replayed,
    )


@router.get("/slots", response_model=SlotsResponse)
async def list_slots(
    day: date = Query(..., alias="date", description="local calendar day (YYYY-MM-DD)"),
    tz_offset_minutes: Optional[int] = Query(default=None, alias="tzOffsetMinutes"),
    res_repo: ReservationRepository = Depends(get_reservation_repo),
    settings: Settings = Depends(get_settings),
) -> SlotsResponse:
    offset = settings.default_tz_offset_minutes if tz_offset_minutes is None else tz_offset_minutes
    rows = await reservation_usecase.list_slots(res_repo, day=day, tz_offset_minutes=offset)
    return SlotsResponse(reservations=[SlotReservation.from_db(r) for r in rows])
