"""Deposit holds on a reservation.

A deposit is a manual-capture card authorization: ``authorized`` first, then
either ``captured`` or ``canceled``. The payment provider is called without
holding the reservation row lock; the state is re-checked under the lock
before it is written.
"""

import logging
from typing import Optional

from ..domain.errors import ConflictError, NotFoundError, ValidationError
from ..domain.gateways import PaymentInfo, Payments
from ..domain.repositories import ReservationRepository
from ..models import DepositStatus, Reservation

logger = logging.getLogger(__name__)


async def _load(res_repo: ReservationRepository, reservation_id: int) -> Reservation:
    reservation = await res_repo.get(reservation_id)
    if reservation is None:
        raise NotFoundError(f"reservation {reservation_id} not found")
    return reservation


async def _load_locked(res_repo: ReservationRepository, reservation_id: int) -> Reservation:
    reservation = await res_repo.get_for_update(reservation_id)
    if reservation is None:
        raise NotFoundError(f"reservation {reservation_id} not found")
    return reservation


def _require_authorized(reservation: Reservation) -> str:
    if reservation.deposit_status != DepositStatus.AUTHORIZED or not reservation.deposit_payment_reference:
        raise ValidationError(
            f"reservation {reservation.id} has no authorized deposit (status: {reservation.deposit_status})"
        )
    return reservation.deposit_payment_reference


async def authorize_deposit(
    res_repo: ReservationRepository,
    payments: Payments,
    *,
    reservation_id: int,
    amount_cents: int,
) -> tuple[Reservation, PaymentInfo]:
    reservation = await _load(res_repo, reservation_id)
    if reservation.deposit_status in (DepositStatus.AUTHORIZED, DepositStatus.CAPTURED):
        raise ValidationError(f"reservation {reservation_id} already has a deposit ({reservation.deposit_status})")

    hold = await payments.authorize(
        amount_cents,
        {"reservation_id": str(reservation_id), "kind": "deposit"},
        manual_capture=True,
    )

    reservation = await _load_locked(res_repo, reservation_id)
    if reservation.deposit_status in (DepositStatus.AUTHORIZED, DepositStatus.CAPTURED):
        logger.warning("deposit for reservation %s changed concurrently, releasing %s", reservation_id, hold.reference)
        await payments.cancel(hold.reference)
        raise ConflictError(f"reservation {reservation_id} deposit changed concurrently")

    reservation.deposit_payment_reference = hold.reference
    reservation.deposit_status = DepositStatus.AUTHORIZED
    return await res_repo.save(reservation), hold


async def capture_deposit(
    res_repo: ReservationRepository,
    payments: Payments,
    *,
    reservation_id: int,
    amount_cents: Optional[int] = None,
) -> tuple[Reservation, PaymentInfo]:
    reference = _require_authorized(await _load(res_repo, reservation_id))
    result = await payments.capture(reference, amount_cents)
    return await _transition(res_repo, reservation_id, reference, DepositStatus.CAPTURED), result


async def cancel_deposit(
    res_repo: ReservationRepository,
    payments: Payments,
    *,
    reservation_id: int,
) -> tuple[Reservation, PaymentInfo]:
    reference = _require_authorized(await _load(res_repo, reservation_id))
    result = await payments.cancel(reference)
    return await _transition(res_repo, reservation_id, reference, DepositStatus.CANCELED), result


async def _transition(
    res_repo: ReservationRepository,
    reservation_id: int,
    reference: str,
    target: DepositStatus,
) -> Reservation:
    reservation = await _load_locked(res_repo, reservation_id)
    if reservation.deposit_payment_reference != reference:
        raise ConflictError(f"reservation {reservation_id} deposit changed concurrently")
    reservation.deposit_status = target
    return await res_repo.save(reservation)
