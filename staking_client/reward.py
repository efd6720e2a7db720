"""Client-side projection of staking rewards.

``calculate_reward`` reproduces the program's time-weighted, APY-capped
pro-rata formula so that callers can show the reward a position would be
credited right now without sending a transaction. The on-chain value after a
confirmed transaction stays authoritative.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from .accounts import StakerEntry, StakingPool, StakingState

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 3600 * 24
DAYS_PER_YEAR = 365.50


def _finite_non_negative(*values: Any) -> bool:
    for value in values:
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            return False
        if not math.isfinite(number) or number < 0:
            return False
    return True


def calculate_reward(
    apy_max: float,
    pool_staked: float,
    pool_reward: float,
    timeframe_start: int,
    timeframe_end: int,
    staked: float,
    stake_start_time: int,
    min_stake_period: int,
    now_ts: int,
) -> float:
    if not _finite_non_negative(
        apy_max, pool_staked, pool_reward, timeframe_start, timeframe_end,
        staked, stake_start_time, min_stake_period, now_ts,
    ):
        logger.debug("Rejecting non-finite or negative reward inputs")
        return 0

    if staked == 0 or stake_start_time >= timeframe_end:
        return 0

    frame_seconds = timeframe_end - timeframe_start
    seconds = now_ts - stake_start_time
    if seconds > frame_seconds:
        seconds = frame_seconds
    if seconds < min_stake_period:
        return 0

    days = seconds / SECONDS_PER_DAY
    frame_days = frame_seconds / SECONDS_PER_DAY
    # 0/0 paths count as invalid input.
    if days <= 0 or frame_days <= 0 or pool_staked <= 0:
        return 0

    gained_total = (pool_reward * days * staked) / (frame_days * pool_staked)
    gained_per_day = gained_total / days
    staked_per_day = staked / days
    gained_percent_per_day = gained_per_day * 100.00 / staked_per_day
    apd_max = apy_max / DAYS_PER_YEAR

    if gained_percent_per_day > apd_max:
        gained_percent_per_day = apd_max

    gained = gained_percent_per_day * staked_per_day * days / 100.00
    return gained


def project_reward_amount(
    apy_max: float,
    pool_staked: float,
    pool_reward: float,
    timeframe_start: int,
    timeframe_end: int,
    staked: float,
    stake_start_time: int,
    min_stake_period: int,
    now_ts: int,
) -> int:
    """``calculate_reward`` truncated toward zero, as the program stores it."""
    return int(
        calculate_reward(
            apy_max, pool_staked, pool_reward, timeframe_start, timeframe_end,
            staked, stake_start_time, min_stake_period, now_ts,
        )
    )


def find_staker(pool: StakingPool, state: StakingState) -> Optional[StakerEntry]:
    for staker in pool.stakers:
        if staker.staker_crc != state.my_crc:
            continue
        return staker
    return None


def get_gained_reward(pool: StakingPool, state: StakingState) -> int:
    """Reward already recorded for ``state``'s owner; 0 once fully unstaked."""
    staker = find_staker(pool, state)
    if staker is None:
        return 0
    return int(staker.gained_reward)


def project_for_staker(pool: StakingPool, state: StakingState, now_ts: int) -> int:
    staker = find_staker(pool, state)
    if staker is None:
        return 0
    return project_reward_amount(
        pool.apy_max,
        pool.total_staked,
        pool.pool_reward,
        pool.timeframe_started,
        pool.timeframe_end,
        staker.staked,
        staker.staked_time,
        pool.min_stake_period,
        now_ts,
    )
