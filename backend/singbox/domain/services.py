from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from ..models import ReservationStatus
from .errors import ConflictError
from .timeslots import CartItem


def ensure_cart_disjoint(items: Sequence[CartItem]) -> None:
    """Reject carts that book the same box twice for overlapping ranges."""
    for i, first in enumerate(items):
        for second in items[i + 1 :]:
            if first.resource_id == second.resource_id and first.range.overlaps(second.range):
                raise ConflictError(f"cart books box {first.resource_id} twice for overlapping times")


@dataclass(frozen=True)
class ReservationSnapshot:
    starts_at: datetime
    ends_at: datetime
    status: str


@dataclass(frozen=True)
class AccessDecision:
    access: bool
    reason: str


def decide_access(
    snapshot: ReservationSnapshot,
    *,
    now: datetime,
    early_margin: timedelta,
    last_entry_margin: timedelta,
) -> AccessDecision:
    """
    Door access rule, first match wins: too early, too late, bad status, ok.
    All datetimes must share the same timezone convention.
    """
    if now < snapshot.starts_at - early_margin:
        return AccessDecision(access=False, reason="too early")
    if now > snapshot.ends_at - last_entry_margin:
        return AccessDecision(access=False, reason="too late")
    if snapshot.status != ReservationStatus.CONFIRMED:
        return AccessDecision(access=False, reason=f"invalid status: {snapshot.status}")
    return AccessDecision(access=True, reason="ok")
