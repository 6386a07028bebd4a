from fastapi import APIRouter, Depends

from ..deps import get_current_user_id, get_loyalty_repo, get_policy
from ..domain.repositories import LoyaltyRepository
from ..schemas import LoyaltyRead
from ..usecases import loyalty as loyalty_usecase
from ..usecases.reservations import WorkflowPolicy

router = APIRouter(prefix="/loyalty", tags=["loyalty"])


@router.get("/me", response_model=LoyaltyRead)
async def get_my_balance(
    user_id: int = Depends(get_current_user_id),
    loyalty_repo: LoyaltyRepository = Depends(get_loyalty_repo),
    policy: WorkflowPolicy = Depends(get_policy),
) -> LoyaltyRead:
    balance = await loyalty_usecase.get_balance(
        loyalty_repo,
        user_id=user_id,
        redeem_cost=policy.loyalty_redeem_cost,
    )
    return LoyaltyRead(
        user_id=balance.user_id,
        points=balance.points,
        redeem_cost=balance.redeem_cost,
        can_redeem=balance.can_redeem,
    )
