"""Shared fixtures: a staking IDL and Borsh encoders for account snapshots."""

import struct
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
from solders.pubkey import Pubkey

from staking_client.accounts import account_discriminator

PROGRAM_ID = Pubkey.from_string("HohQ7VZFqDDn785ukULBKpNRKHsZXQPtCeUJ9PzYxgZ")

STAKING_IDL: Dict = {
    "version": "0.1.0",
    "name": "staking",
    "instructions": [],
    "accounts": [
        {
            "name": "StakingData",
            "type": {
                "kind": "struct",
                "fields": [
                    {"name": "mintAddress", "type": "publicKey"},
                    {"name": "escrowAccount", "type": "publicKey"},
                    {"name": "rewarderAccount", "type": "publicKey"},
                    {"name": "funderAuthority", "type": "publicKey"},
                    {"name": "apyMax", "type": "u32"},
                    {"name": "totalStaked", "type": "u64"},
                    {"name": "rewarderBalance", "type": "u64"},
                    {"name": "totalFunded", "type": "u64"},
                    {"name": "totalRewardPaid", "type": "u64"},
                    {"name": "poolReward", "type": "u64"},
                    {"name": "timeframeStarted", "type": "u64"},
                    {"name": "timeframeInSecond", "type": "u64"},
                    {"name": "payoutReward", "type": "u64"},
                    {"name": "minStakePeriod", "type": "u64"},
                    {"name": "stakers", "type": {"vec": {"defined": "StakerInfo"}}},
                ],
            },
        },
        {
            "name": "StakingState",
            "type": {
                "kind": "struct",
                "fields": [
                    {"name": "stakingAccount", "type": "publicKey"},
                    {"name": "mintAddress", "type": "publicKey"},
                    {"name": "onwerAddress", "type": "publicKey"},
                    {"name": "totalStaked", "type": "u64"},
                    {"name": "totalRewarded", "type": "u64"},
                    {"name": "lastStaked", "type": "u64"},
                    {"name": "lastRewarded", "type": "u64"},
                    {"name": "myCrc", "type": "u32"},
                ],
            },
        },
    ],
    "types": [
        {
            "name": "StakerInfo",
            "type": {
                "kind": "struct",
                "fields": [
                    {"name": "stakerCrc", "type": "u32"},
                    {"name": "staked", "type": "u64"},
                    {"name": "stakedTime", "type": "u64"},
                    {"name": "gainedReward", "type": "u64"},
                ],
            },
        }
    ],
    "errors": [
        {"code": 300, "name": "InsufficientBalance", "msg": "insufficient balance"},
        {"code": 301, "name": "TimeframeTooShort", "msg": "timeframe must big than min"},
        {"code": 302, "name": "TimeframeBelowStakePeriod", "msg": "timeframe must big than min stake period"},
        {"code": 303, "name": "InsufficientGainedReward", "msg": "insufficient gained reward"},
    ],
}


def encode_pool(
    mint: Pubkey,
    escrow: Pubkey,
    rewarder: Pubkey,
    funder: Pubkey,
    apy_max: int = 800,
    totals: Sequence[int] = (0, 0, 0, 0, 0, 0, 0, 0, 0),
    stakers: Sequence[Tuple[int, int, int, int]] = (),
) -> bytes:
    """``totals`` follows the IDL order from totalStaked to minStakePeriod."""
    chunks: List[bytes] = [account_discriminator("StakingData")]
    chunks += [bytes(mint), bytes(escrow), bytes(rewarder), bytes(funder)]
    chunks.append(struct.pack("<I", apy_max))
    chunks.append(struct.pack("<9Q", *totals))
    chunks.append(struct.pack("<I", len(stakers)))
    for crc, staked, staked_time, gained in stakers:
        chunks.append(struct.pack("<IQQQ", crc, staked, staked_time, gained))
    return b"".join(chunks)


def encode_state(
    pool: Pubkey,
    mint: Pubkey,
    owner: Pubkey,
    my_crc: int,
    totals: Sequence[int] = (0, 0, 0, 0),
) -> bytes:
    return b"".join(
        [
            account_discriminator("StakingState"),
            bytes(pool),
            bytes(mint),
            bytes(owner),
            struct.pack("<4Q", *totals),
            struct.pack("<I", my_crc),
        ]
    )


def new_pubkey(seed: int) -> Pubkey:
    return Pubkey.from_bytes(bytes([seed]) * 32)


@pytest.fixture
def program_id() -> Pubkey:
    return PROGRAM_ID


@pytest.fixture
def idl() -> Dict:
    return STAKING_IDL


@pytest.fixture
def mint() -> Pubkey:
    return new_pubkey(7)


@pytest.fixture
def pool_bytes(mint):
    def _build(
        stakers: Sequence[Tuple[int, int, int, int]] = ((11, 1000, 0, 0),),
        totals: Optional[Sequence[int]] = None,
        apy_max: int = 800,
    ) -> bytes:
        if totals is None:
            staked = sum(entry[1] for entry in stakers)
            payout = sum(entry[3] for entry in stakers)
            # totalStaked, rewarderBalance, totalFunded, totalRewardPaid, poolReward,
            # timeframeStarted, timeframeInSecond, payoutReward, minStakePeriod
            totals = (staked, 1000, 1000, 0, 1000, 0, 30, payout, 30)
        return encode_pool(mint, new_pubkey(2), new_pubkey(3), new_pubkey(4), apy_max, totals, stakers)

    return _build
