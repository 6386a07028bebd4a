from datetime import datetime, timedelta
from typing import Optional

from ..domain.errors import NotFoundError
from ..domain.repositories import ReservationRepository
from ..domain.services import AccessDecision, ReservationSnapshot, decide_access
from ..models import Reservation
from ..utils.time import utc_naive_to_aware, utc_now


async def check_access(
    res_repo: ReservationRepository,
    *,
    reservation_id: int,
    early_margin_minutes: int,
    last_entry_margin_minutes: int,
    now: Optional[datetime] = None,
) -> tuple[Reservation, AccessDecision]:
    reservation = await res_repo.get(reservation_id)
    if reservation is None:
        raise NotFoundError(f"reservation {reservation_id} not found")

    snapshot = ReservationSnapshot(
        starts_at=utc_naive_to_aware(reservation.starts_at),
        ends_at=utc_naive_to_aware(reservation.ends_at),
        status=str(reservation.status),
    )
    decision = decide_access(
        snapshot,
        now=now or utc_now(),
        early_margin=timedelta(minutes=early_margin_minutes),
        last_entry_margin=timedelta(minutes=last_entry_margin_minutes),
    )
    return reservation, decision
