import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ..deps import (
    get_loyalty_repo,
    get_optional_user_id,
    get_payments,
    get_policy,
    get_promo_repo,
    get_reservation_repo,
)
from ..domain.errors import (
    ConflictError,
    DependencyUnavailable,
    NotFoundError,
    PaymentNotVerified,
    ValidationError,
)
from ..domain.gateways import Payments
from ..domain.pricing import to_cents
from ..domain.repositories import LoyaltyRepository, PromoRepository, ReservationRepository
from ..models import DepositStatus, Reservation
from ..schemas import (
    DepositAuthorizeRequest,
    DepositCancelRequest,
    DepositCaptureRequest,
    DepositRead,
    PaymentIntentRequest,
    PaymentIntentResponse,
)
from ..usecases import deposits as deposit_usecase
from ..usecases import reservations as reservation_usecase
from ..usecases.reservations import WorkflowPolicy
from ..utils.audit_log import AuditAction, emit_audit_log
from ..utils.time import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    payload: PaymentIntentRequest,
    res_repo: ReservationRepository = Depends(get_reservation_repo),
    promo_repo: PromoRepository = Depends(get_promo_repo),
    loyalty_repo: LoyaltyRepository = Depends(get_loyalty_repo),
    payments: Payments = Depends(get_payments),
    policy: WorkflowPolicy = Depends(get_policy),
    user_id: Optional[int] = Depends(get_optional_user_id),
) -> PaymentIntentResponse:
    try:
        outcome = await reservation_usecase.create_payment_intent(
            res_repo,
            promo_repo,
            loyalty_repo,
            payments,
            policy=policy,
            slots=[slot.to_domain() for slot in payload.cart],
            customer=payload.customer.to_domain(),
            promo_code=payload.promo_code,
            loyalty_used=payload.loyalty_used,
            user_id=user_id,
            today=utc_now().date(),
        )
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except DependencyUnavailable as exc:
        logger.exception("payment intent creation failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))

    payment = outcome.payment
    return PaymentIntentResponse.from_quote(
        outcome.quote,
        payment_reference=payment.reference if payment else None,
        client_secret=payment.client_secret if payment else None,
    )


def _emit_deposit_audit(
    action: AuditAction,
    reservation: Reservation,
    status_from: Optional[DepositStatus],
) -> None:
    try:
        emit_audit_log(
            action=action,
            initiator="staff",
            reservation_id=reservation.id,
            box_id=reservation.box_id,
            user_id=reservation.user_id,
            status_from=status_from,
            status_to=reservation.deposit_status,
            payment_reference=reservation.deposit_payment_reference,
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")


def _deposit_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (ValidationError, PaymentNotVerified)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error("deposit operation failed: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


_DEPOSIT_ERRORS = (NotFoundError, ConflictError, ValidationError, PaymentNotVerified, DependencyUnavailable)


@router.post("/deposit/authorize", response_model=DepositRead)
async def authorize_deposit(
    payload: DepositAuthorizeRequest,
    res_repo: ReservationRepository = Depends(get_reservation_repo),
    payments: Payments = Depends(get_payments),
) -> DepositRead:
    try:
        reservation, hold = await deposit_usecase.authorize_deposit(
            res_repo,
            payments,
            reservation_id=payload.reservation_id,
            amount_cents=to_cents(payload.amount),
        )
    except _DEPOSIT_ERRORS as exc:
        raise _deposit_error(exc)

    _emit_deposit_audit("deposit.authorized", reservation, None)
    return DepositRead(
        reservation_id=reservation.id,
        deposit_status=reservation.deposit_status,
        payment_reference=reservation.deposit_payment_reference,
        client_secret=hold.client_secret,
    )


@router.post("/deposit/capture", response_model=DepositRead)
async def capture_deposit(
    payload: DepositCaptureRequest,
    res_repo: ReservationRepository = Depends(get_reservation_repo),
    payments: Payments = Depends(get_payments),
) -> DepositRead:
    try:
        reservation, _ = await deposit_usecase.capture_deposit(
            res_repo,
            payments,
            reservation_id=payload.reservation_id,
            amount_cents=to_cents(payload.amount) if payload.amount is not None else None,
        )
    except _DEPOSIT_ERRORS as exc:
        raise _deposit_error(exc)

    _emit_deposit_audit("deposit.captured", reservation, DepositStatus.AUTHORIZED)
    return DepositRead(
        reservation_id=reservation.id,
        deposit_status=reservation.deposit_status,
        payment_reference=reservation.deposit_payment_reference,
    )


@router.post("/deposit/cancel", response_model=DepositRead)
async def cancel_deposit(
    payload: DepositCancelRequest,
    res_repo: ReservationRepository = Depends(get_reservation_repo),
    payments: Payments = Depends(get_payments),
) -> DepositRead:
    try:
        reservation, _ = await deposit_usecase.cancel_deposit(
            res_repo,
            payments,
            reservation_id=payload.reservation_id,
        )
    except _DEPOSIT_ERRORS as exc:
        raise _deposit_error(exc)

    _emit_deposit_audit("deposit.canceled", reservation, DepositStatus.AUTHORIZED)
    return DepositRead(
        reservation_id=reservation.id,
        deposit_status=reservation.deposit_status,
        payment_reference=reservation.deposit_payment_reference,
    )
