# ===============================================================
# Rewards & Referrals: read-side aggregation
# ===============================================================
# Pure functions over cached rewards / referral data. No I/O;
# called by core.store (accessors) and backend.routes.rewards.
# ===============================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from core.models import (
    REWARD_STATUS_RANK,
    Deal,
    DealStatus,
    ReferralEarning,
    ReferralSummary,
    ReferredAgent,
    Reward,
    RewardProgress,
    RewardStatus,
    User,
    UserReward,
    as_utc,
)


# ===============================================================
# Reward progress
# ===============================================================
def reward_progress(points_balance: int, points_required: int) -> float:
    """Percentage (0-100) of a reward's point requirement covered by the balance."""
    if points_required <= 0:
        return 0.0
    return min(100.0, points_balance / points_required * 100)


def advance_status(current: RewardStatus, requested: RewardStatus) -> RewardStatus:
    """Return `requested` unless it would move the reward backwards."""
    if REWARD_STATUS_RANK[requested] >= REWARD_STATUS_RANK[current]:
        return requested
    return current


def build_reward_progress(
    rewards: Iterable[Reward],
    user_rewards: Iterable[UserReward],
    points_balance: int,
) -> List[RewardProgress]:
    """
    One progress row per reward for a single user.

    A stored user reward supplies status and progress; without one the
    status is `available` once the balance covers the requirement, else
    `locked`, and progress is computed from the balance.
    """
    by_reward: Dict[str, UserReward] = {ur.reward_id: ur for ur in user_rewards}
    rows: List[RewardProgress] = []

    for reward in rewards:
        stored = by_reward.get(reward.id)
        computed = reward_progress(points_balance, reward.points_required)

        if stored is not None:
            status = stored.status
        elif points_balance >= reward.points_required:
            status = RewardStatus.AVAILABLE
        else:
            status = RewardStatus.LOCKED

        rows.append(
            RewardProgress(
                reward=reward,
                user_reward_id=stored.id if stored else None,
                status=status,
                progress=stored.progress if stored and stored.progress else computed,
                points_needed=max(0, reward.points_required - points_balance),
            )
        )
    return rows


# ===============================================================
# Referral summary
# ===============================================================
def summarize_referrals(
    earnings: Iterable[ReferralEarning],
    referred_users: Iterable[User],
    deals: Iterable[Deal],
    now: Optional[datetime] = None,
) -> ReferralSummary:
    """
    Roll up a referrer's program data.

    Parameters
    ----------
    earnings : ReferralEarning rows where the user is the referrer.
    referred_users : accounts whose `referred_by` is the user.
    deals : every cached deal; closed deals are credited to their closer.
    now : reference time for the calendar-month total (defaults to UTC now).
    """
    earnings = list(earnings)
    deals = list(deals)
    now = as_utc(now) or datetime.now(timezone.utc)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    this_month = 0.0
    for e in earnings:
        created = as_utc(e.created_at)
        if created is not None and created >= month_start:
            this_month += e.earning_amount

    agents: List[ReferredAgent] = []
    for user in referred_users:
        agents.append(
            ReferredAgent(
                id=user.id,
                full_name=user.full_name,
                email=user.email,
                avatar_url=user.avatar_url,
                status=user.status,
                deals_closed=sum(
                    1 for d in deals if d.closer_id == user.id and d.status == DealStatus.CLOSED
                ),
                total_earnings_generated=sum(
                    e.earning_amount for e in earnings if e.referred_agent_id == user.id
                ),
                joined_at=user.created_at,
            )
        )

    return ReferralSummary(
        total_referrals=len(agents),
        total_earnings_lifetime=sum(e.earning_amount for e in earnings),
        total_earnings_this_month=this_month,
        referred_agents=agents,
    )
