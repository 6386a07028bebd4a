from dataclasses import dataclass

from ..domain.repositories import LoyaltyRepository


@dataclass(frozen=True)
class LoyaltyBalance:
    user_id: int
    points: int
    redeem_cost: int

    @property
    def can_redeem(self) -> bool:
        return self.points >= self.redeem_cost


async def get_balance(loyalty_repo: LoyaltyRepository, *, user_id: int, redeem_cost: int) -> LoyaltyBalance:
    points = await loyalty_repo.get_points(user_id)
    return LoyaltyBalance(user_id=user_id, points=points, redeem_cost=redeem_cost)
