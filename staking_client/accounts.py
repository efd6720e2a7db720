"""Read-only views of the staking program's on-chain accounts.

Views are built either from already decoded mappings (the shape Anchor's
account coder produces) or straight from raw account bytes through
``IdlAccountCoder``, which hands the Borsh layout to anchorpy. Only the Clock
sysvar, whose layout is fixed, is unpacked here directly.
"""

from __future__ import annotations

import hashlib
import json
import logging
import struct
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from anchorpy import Idl
from anchorpy.coder.accounts import AccountsCoder
from solders.pubkey import Pubkey

from .errors import AccountDecodeError

logger = logging.getLogger(__name__)

DISCRIMINATOR_SIZE = 8
STAKING_DATA_ACCOUNT = "StakingData"
STAKING_STATE_ACCOUNT = "StakingState"


def _pick(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        value = value.strip()
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    return int(value)


def _as_pubkey(value: Any) -> Optional[Pubkey]:
    if value is None or isinstance(value, Pubkey):
        return value
    if isinstance(value, (bytes, bytearray)):
        return Pubkey.from_bytes(bytes(value))
    return Pubkey.from_string(str(value))


@dataclass(frozen=True)
class StakerEntry:
    staker_crc: Any
    staked: int = 0
    staked_time: int = 0
    gained_reward: int = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StakerEntry":
        return cls(
            staker_crc=_pick(raw, "stakerCrc", "staker_crc"),
            staked=_as_int(_pick(raw, "staked", default=0)),
            staked_time=_as_int(_pick(raw, "stakedTime", "staked_time", default=0)),
            gained_reward=_as_int(_pick(raw, "gainedReward", "gained_reward", default=0)),
        )


@dataclass(frozen=True)
class StakingPool:
    """Aggregate ``stakingData`` account for one (authority, mint) pair."""

    mint_address: Optional[Pubkey] = None
    escrow_account: Optional[Pubkey] = None
    rewarder_account: Optional[Pubkey] = None
    funder_authority: Optional[Pubkey] = None
    apy_max: int = 0
    total_staked: int = 0
    rewarder_balance: int = 0
    total_funded: int = 0
    total_reward_paid: int = 0
    pool_reward: int = 0
    timeframe_started: int = 0
    timeframe_in_second: int = 0
    payout_reward: int = 0
    min_stake_period: int = 0
    stakers: Tuple[StakerEntry, ...] = field(default_factory=tuple)

    @property
    def timeframe_end(self) -> int:
        return self.timeframe_started + self.timeframe_in_second

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StakingPool":
        stakers = tuple(
            entry if isinstance(entry, StakerEntry) else StakerEntry.from_dict(entry)
            for entry in _pick(raw, "stakers", default=()) or ()
        )
        return cls(
            mint_address=_as_pubkey(_pick(raw, "mintAddress", "mint_address")),
            escrow_account=_as_pubkey(_pick(raw, "escrowAccount", "escrow_account")),
            rewarder_account=_as_pubkey(_pick(raw, "rewarderAccount", "rewarder_account")),
            funder_authority=_as_pubkey(_pick(raw, "funderAuthority", "funder_authority")),
            apy_max=_as_int(_pick(raw, "apyMax", "apy_max", default=0)),
            total_staked=_as_int(_pick(raw, "totalStaked", "total_staked", default=0)),
            rewarder_balance=_as_int(_pick(raw, "rewarderBalance", "rewarder_balance", default=0)),
            total_funded=_as_int(_pick(raw, "totalFunded", "total_funded", default=0)),
            total_reward_paid=_as_int(_pick(raw, "totalRewardPaid", "total_reward_paid", default=0)),
            pool_reward=_as_int(_pick(raw, "poolReward", "pool_reward", default=0)),
            timeframe_started=_as_int(_pick(raw, "timeframeStarted", "timeframe_started", default=0)),
            timeframe_in_second=_as_int(_pick(raw, "timeframeInSecond", "timeframe_in_second", default=0)),
            payout_reward=_as_int(_pick(raw, "payoutReward", "payout_reward", default=0)),
            min_stake_period=_as_int(_pick(raw, "minStakePeriod", "min_stake_period", default=0)),
            stakers=stakers,
        )

    def check_invariants(self) -> List[str]:
        violations: List[str] = []
        staked_sum = sum(entry.staked for entry in self.stakers)
        if staked_sum != self.total_staked:
            violations.append(f"total_staked {self.total_staked} != sum of staker positions {staked_sum}")
        gained_sum = sum(entry.gained_reward for entry in self.stakers)
        if gained_sum != self.payout_reward:
            violations.append(f"payout_reward {self.payout_reward} != sum of gained rewards {gained_sum}")
        empty = [entry.staker_crc for entry in self.stakers if entry.staked <= 0]
        if empty:
            violations.append(f"staker entries without a position: {empty}")
        return violations


@dataclass(frozen=True)
class StakingState:
    """Per-staker ``stakingState`` account."""

    my_crc: Any = None
    staking_account: Optional[Pubkey] = None
    mint_address: Optional[Pubkey] = None
    owner_address: Optional[Pubkey] = None
    total_staked: int = 0
    total_rewarded: int = 0
    last_staked: int = 0
    last_rewarded: int = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StakingState":
        return cls(
            my_crc=_pick(raw, "myCrc", "my_crc"),
            staking_account=_as_pubkey(_pick(raw, "stakingAccount", "staking_account", "stakingData")),
            mint_address=_as_pubkey(_pick(raw, "mintAddress", "mint_address")),
            # The program spells the field "onwerAddress".
            owner_address=_as_pubkey(_pick(raw, "onwerAddress", "onwer_address", "ownerAddress", "owner_address")),
            total_staked=_as_int(_pick(raw, "totalStaked", "total_staked", default=0)),
            total_rewarded=_as_int(_pick(raw, "totalRewarded", "total_rewarded", default=0)),
            last_staked=_as_int(_pick(raw, "lastStaked", "last_staked", default=0)),
            last_rewarded=_as_int(_pick(raw, "lastRewarded", "last_rewarded", default=0)),
        )


@dataclass(frozen=True)
class Clock:
    slot: int
    epoch_start_timestamp: int
    epoch: int
    leader_schedule_epoch: int
    unix_timestamp: int

    LAYOUT = struct.Struct("<5Q")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Clock":
        if len(data) < cls.LAYOUT.size:
            raise AccountDecodeError(f"clock data too short: have {len(data)} bytes, need {cls.LAYOUT.size}")
        return cls(*cls.LAYOUT.unpack_from(data, 0))


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:DISCRIMINATOR_SIZE]


def _plain(value: Any) -> Any:
    """Turn anchorpy's decoded dataclasses and containers into plain mappings."""
    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: _plain(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, Mapping):
        # construct containers carry private bookkeeping keys such as "_io".
        return {key: _plain(item) for key, item in value.items() if not str(key).startswith("_")}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


class IdlAccountCoder:
    """Decode Anchor accounts with anchorpy's coder for the program IDL.

    anchorpy snake-cases IDL field names; the views accept both spellings.
    """

    def __init__(self, idl: Mapping[str, Any]) -> None:
        self.idl = Idl.from_json(json.dumps(idl))
        self._names = {account.name for account in self.idl.accounts}
        self._coder = AccountsCoder(self.idl)
        self.logger = logging.getLogger(self.__class__.__name__)

    def discriminator(self, name: str) -> bytes:
        return account_discriminator(name)

    def decode(self, name: str, data: bytes) -> Dict[str, Any]:
        if name not in self._names:
            raise AccountDecodeError(f"account {name} is not described by the IDL")
        if bytes(data[:DISCRIMINATOR_SIZE]) != self.discriminator(name):
            raise AccountDecodeError(f"account discriminator mismatch for {name}")
        try:
            decoded = self._coder.decode(bytes(data))
        except Exception as exc:  # pylint: disable=broad-except
            raise AccountDecodeError(f"could not decode {name}: {exc}") from exc
        self.logger.debug("Decoded %s (%d bytes)", name, len(data))
        return _plain(decoded)

    def decode_pool(self, data: bytes) -> StakingPool:
        return StakingPool.from_dict(self.decode(STAKING_DATA_ACCOUNT, data))

    def decode_state(self, data: bytes) -> StakingState:
        return StakingState.from_dict(self.decode(STAKING_STATE_ACCOUNT, data))
