from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..config import Settings, get_settings
from ..deps import get_reservation_repo
from ..domain.errors import NotFoundError
from ..domain.repositories import ReservationRepository
from ..schemas import AccessCheckResponse, ReservationRead
from ..usecases import access as access_usecase

router = APIRouter(prefix="/access", tags=["access"])


@router.get("/check", response_model=AccessCheckResponse)
async def check_access(
    reservation_id: int = Query(..., alias="id", ge=1),
    res_repo: ReservationRepository = Depends(get_reservation_repo),
    settings: Settings = Depends(get_settings),
) -> AccessCheckResponse:
    try:
        reservation, decision = await access_usecase.check_access(
            res_repo,
            reservation_id=reservation_id,
            early_margin_minutes=settings.access_early_margin_minutes,
            last_entry_margin_minutes=settings.access_last_entry_margin_minutes,
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")

    return AccessCheckResponse(
        valid=True,
        access=decision.access,
        reason=decision.reason,
        reservation=ReservationRead.from_db(reservation),
    )
