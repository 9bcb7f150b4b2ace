"""
Rewards catalogue, per-user reward progress and the referral program.
"""

from typing import List

from fastapi import APIRouter, Depends

from backend.deps import current_identity, get_store, require_admin
from backend.schemas import (
    FulfillRequest,
    ReferralEarningCreate,
    RewardCreate,
    RewardToggle,
    RewardUpdate,
    UserRewardUpdate,
)
from core.models import Identity, ReferralEarning, ReferralSummary, Reward, RewardProgress, UserReward
from core.store import CrmStore

router = APIRouter(tags=["rewards"])


@router.get("/rewards", response_model=List[RewardProgress])
async def my_rewards(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    await store.load_rewards(me.user_id, include_inactive=me.is_admin)
    return store.get_reward_progress(me.user_id)


@router.post("/rewards", response_model=Reward, status_code=201)
async def create_reward(body: RewardCreate, _: Identity = Depends(require_admin), store: CrmStore = Depends(get_store)):
    return await store.create_reward(body.model_dump())


@router.patch("/rewards/{reward_id}", response_model=Reward)
async def update_reward(
    reward_id: str,
    body: RewardUpdate,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    return await store.update_reward(reward_id, body.model_dump(exclude_unset=True))


@router.post("/rewards/{reward_id}/toggle", response_model=Reward)
async def toggle_reward(
    reward_id: str,
    body: RewardToggle,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    return await store.toggle_reward_active(reward_id, body.is_active)


@router.delete("/rewards/{reward_id}")
async def delete_reward(reward_id: str, _: Identity = Depends(require_admin), store: CrmStore = Depends(get_store)):
    await store.delete_reward(reward_id)
    return {"status": "deleted", "id": reward_id}


@router.patch("/user-rewards/{user_reward_id}", response_model=UserReward)
async def update_user_reward(
    user_reward_id: str,
    body: UserRewardUpdate,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    return await store.update_user_reward(user_reward_id, body.model_dump(exclude_unset=True))


@router.post("/user-rewards/{user_reward_id}/fulfill", response_model=UserReward)
async def fulfill_user_reward(
    user_reward_id: str,
    body: FulfillRequest,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    return await store.fulfill_user_reward(user_reward_id, body.notes)


@router.get("/referrals/summary", response_model=ReferralSummary)
async def referral_summary(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    await store.load_referrals(me.user_id)
    return store.get_referral_summary(me.user_id)


@router.post("/referrals/earnings", response_model=ReferralEarning, status_code=201)
async def record_earning(
    body: ReferralEarningCreate,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    return await store.record_referral_earning(body.model_dump())
