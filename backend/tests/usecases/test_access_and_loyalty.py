from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest
from singbox.domain.errors import NotFoundError
from singbox.models import Reservation, ReservationStatus
from singbox.usecases import access as access_uc
from singbox.usecases import loyalty as loyalty_uc

STARTS = datetime(2025, 6, 1, 18, 0)


class FakeResRepo:
    def __init__(self, reservation: Optional[Reservation]) -> None:
        self.reservation = reservation

    async def get(self, reservation_id: int) -> Optional[Reservation]:
        return self.reservation


class FakeLoyaltyRepo:
    def __init__(self, points: int) -> None:
        self.points = points

    async def get_points(self, user_id: int) -> int:
        return self.points


def _reservation(status: ReservationStatus = ReservationStatus.CONFIRMED) -> Reservation:
    return Reservation(
        id=1,
        box_id=1,
        day=STARTS.date(),
        starts_at=STARTS,
        ends_at=STARTS + timedelta(hours=1),
        duration_minutes=60,
        price=Decimal("10"),
        status=status,
    )


@pytest.mark.asyncio
async def test_check_access_grants_shortly_before_start() -> None:
    now = STARTS.replace(tzinfo=timezone.utc) - timedelta(minutes=3)
    reservation, decision = await access_uc.check_access(
        FakeResRepo(_reservation()),
        reservation_id=1,
        early_margin_minutes=5,
        last_entry_margin_minutes=5,
        now=now,
    )
    assert reservation.id == 1
    assert decision.access is True
    assert decision.reason == "ok"


@pytest.mark.asyncio
async def test_check_access_reports_status() -> None:
    now = STARTS.replace(tzinfo=timezone.utc) + timedelta(minutes=10)
    _, decision = await access_uc.check_access(
        FakeResRepo(_reservation(ReservationStatus.NO_SHOW)),
        reservation_id=1,
        early_margin_minutes=5,
        last_entry_margin_minutes=5,
        now=now,
    )
    assert decision.access is False
    assert decision.reason == "invalid status: no_show"


@pytest.mark.asyncio
async def test_check_access_unknown_reservation() -> None:
    with pytest.raises(NotFoundError):
        await access_uc.check_access(
            FakeResRepo(None),
            reservation_id=404,
            early_margin_minutes=5,
            last_entry_margin_minutes=5,
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("points, can_redeem", [(0, False), (99, False), (100, True), (250, True)])
async def test_get_balance(points: int, can_redeem: bool) -> None:
    balance = await loyalty_uc.get_balance(FakeLoyaltyRepo(points), user_id=7, redeem_cost=100)
    assert balance.points == points
    assert balance.can_redeem is can_redeem
