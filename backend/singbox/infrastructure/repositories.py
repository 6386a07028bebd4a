from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import BookingError, ConflictError, PersistenceFailed, ValidationError
from ..domain.pricing import normalize_code
from ..domain.repositories import (
    LoyaltyRedemption,
    LoyaltyRepository,
    NewReservation,
    PromoRepository,
    ReservationRepository,
)
from ..models import Box, LoyaltyAccount, PromoCode, PromoUsage, Reservation, ReservationStatus
from ..utils.time import to_utc_naive


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def has_conflict(self, resource_id: int, start: datetime, end: datetime) -> bool:
        return await self._first_conflict(resource_id, start, end, lock=False) is not None

    async def _first_conflict(self, resource_id: int, start: datetime, end: datetime, *, lock: bool) -> Optional[int]:
        stmt = (
            select(Reservation.id)
            .where(
                Reservation.box_id == resource_id,
                Reservation.status != ReservationStatus.CANCELLED,
                Reservation.starts_at < to_utc_naive(end),
                Reservation.ends_at > to_utc_naive(start),
            )
            .limit(1)
        )
        if lock:
            # locking read: sees rows committed after this transaction's snapshot
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt)

    async def insert_batch(
        self,
        rows: Sequence[NewReservation],
        *,
        redemption: LoyaltyRedemption | None = None,
    ) -> List[Reservation]:
        box_ids = sorted({row.item.resource_id for row in rows})
        try:
            # Box rows are the per-resource mutex; locking in id order avoids deadlocks.
            locked = await self.session.scalars(
                select(Box.id).where(Box.id.in_(box_ids), Box.is_active.is_(True)).order_by(Box.id).with_for_update()
            )
            missing = set(box_ids) - set(locked.all())
            if missing:
                raise ValidationError(f"unknown box: {', '.join(str(b) for b in sorted(missing))}")

            for row in rows:
                rng = row.item.range
                if await self._first_conflict(row.item.resource_id, rng.start, rng.end, lock=True) is not None:
                    raise ConflictError(f"box {row.item.resource_id} is already booked at {rng.start.isoformat()}")

            now = _utc_now_naive()
            if redemption is not None:
                result = await self.session.execute(
                    update(LoyaltyAccount)
                    .where(
                        LoyaltyAccount.user_id == redemption.user_id,
                        LoyaltyAccount.points >= redemption.points,
                    )
                    .values(points=LoyaltyAccount.points - redemption.points, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ValidationError("not enough loyalty points for a free session")

            reservations = [
                Reservation(
                    customer_name=row.customer_name,
                    customer_email=row.customer_email,
                    user_id=row.user_id,
                    box_id=row.item.resource_id,
                    day=row.item.range.date,
                    starts_at=to_utc_naive(row.item.range.start),
                    ends_at=to_utc_naive(row.item.range.end),
                    duration_minutes=row.item.range.duration,
                    price=row.price,
                    status=ReservationStatus.CONFIRMED,
                    payment_reference=row.payment_reference,
                    created_at=now,
                    updated_at=now,
                )
                for row in rows
            ]
            self.session.add_all(reservations)
            await self.session.flush()
            await self.session.commit()
        except BookingError:
            await self.session.rollback()
            raise
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError("slot was booked concurrently") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceFailed("could not store reservations") from exc
        return reservations

    async def list_by_payment_reference(self, payment_reference: str) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.payment_reference == payment_reference)
            .order_by(Reservation.starts_at, Reservation.id)
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_starting_between(self, start: datetime, end: datetime) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(
                Reservation.status != ReservationStatus.CANCELLED,
                Reservation.starts_at >= to_utc_naive(start),
                Reservation.starts_at < to_utc_naive(end),
            )
            .order_by(Reservation.starts_at, Reservation.box_id)
        )
        return list((await self.session.scalars(stmt)).all())

    async def get(self, reservation_id: int) -> Reservation | None:
        return await self.session.get(Reservation, reservation_id)

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        result = await self.session.scalar(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result if isinstance(result, Reservation) else None

    async def save(self, reservation: Reservation) -> Reservation:
        reservation.updated_at = _utc_now_naive()
        self.session.add(reservation)
        await self.session.flush()
        await self.session.commit()
        return reservation


class SqlAlchemyPromoRepository(PromoRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_code(self, code: str) -> PromoCode | None:
        normalized = normalize_code(code)
        if normalized is None:
            return None
        return await self.session.scalar(select(PromoCode).where(PromoCode.code == normalized))

    async def record_usage(
        self,
        promo_id: int,
        *,
        payment_reference: str | None,
        customer_email: str | None,
        discount: Decimal,
    ) -> bool:
        try:
            result = await self.session.execute(
                update(PromoCode)
                .where(
                    PromoCode.id == promo_id,
                    or_(PromoCode.max_uses.is_(None), PromoCode.used_count < PromoCode.max_uses),
                )
                .values(used_count=PromoCode.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            counted = result.rowcount == 1
            if counted:
                self.session.add(
                    PromoUsage(
                        promo_id=promo_id,
                        payment_reference=payment_reference,
                        customer_email=customer_email,
                        discount=discount,
                        created_at=_utc_now_naive(),
                    )
                )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        return counted


class SqlAlchemyLoyaltyRepository(LoyaltyRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_points(self, user_id: int) -> int:
        points = await self.session.scalar(select(LoyaltyAccount.points).where(LoyaltyAccount.user_id == user_id))
        return int(points or 0)

    async def _increment(self, user_id: int, points: int) -> int:
        result = await self.session.execute(
            update(LoyaltyAccount)
            .where(LoyaltyAccount.user_id == user_id)
            .values(points=LoyaltyAccount.points + points, updated_at=_utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def credit(self, user_id: int, points: int) -> int:
        if points <= 0:
            return await self.get_points(user_id)
        try:
            if await self._increment(user_id, points) == 0:
                self.session.add(LoyaltyAccount(user_id=user_id, points=points, updated_at=_utc_now_naive()))
                try:
                    await self.session.flush()
                except IntegrityError:
                    # account created by a concurrent request
                    await self.session.rollback()
                    await self._increment(user_id, points)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        return await self.get_points(user_id)
