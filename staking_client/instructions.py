"""Anchor instruction encoding for the staking program.

Instruction data is ``sha256("global:<name>")[:8]`` followed by the Borsh
encoded arguments. Account metas and argument widths come from the IDL when
one is configured; the built-in layouts below describe the deployed program
otherwise.
"""

from __future__ import annotations

import hashlib
import logging
import re
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)

INITIALIZE = "initialize"
INITIALIZE_STAKE_STATE = "initialize_stake_state"
STAKING = "staking"
UNSTAKING = "unstaking"
CLAIM_REWARD = "claim_reward"
FUNDING = "funding"
SET_MAX_APY = "set_max_apy"

_ARG_LAYOUTS: Dict[str, struct.Struct] = {
    "u8": struct.Struct("<B"),
    "u16": struct.Struct("<H"),
    "u32": struct.Struct("<I"),
    "u64": struct.Struct("<Q"),
    "i64": struct.Struct("<q"),
    "bool": struct.Struct("<?"),
}


@dataclass(frozen=True)
class AccountSpec:
    name: str
    writable: bool = False
    signer: bool = False


@dataclass(frozen=True)
class InstructionSpec:
    name: str
    args: Tuple[Tuple[str, str], ...]
    accounts: Tuple[AccountSpec, ...]


_DEFAULT_SPECS: Dict[str, InstructionSpec] = {
    INITIALIZE: InstructionSpec(
        INITIALIZE,
        (("apyMax", "u32"), ("minTimeframeInSecond", "u64"), ("minStakePeriod", "u64")),
        (
            AccountSpec("stakingData", writable=True),
            AccountSpec("funderAuthority"),
            AccountSpec("escrowAccount", writable=True),
            AccountSpec("rewarderAccount", writable=True),
            AccountSpec("authority", writable=True, signer=True),
            AccountSpec("mintAddress"),
            AccountSpec("tokenProgram"),
            AccountSpec("systemProgram"),
            AccountSpec("rent"),
        ),
    ),
    INITIALIZE_STAKE_STATE: InstructionSpec(
        INITIALIZE_STAKE_STATE,
        (),
        (
            AccountSpec("stakingData", writable=True),
            AccountSpec("stakeStateAccount", writable=True),
            AccountSpec("authority", writable=True, signer=True),
            AccountSpec("tokenProgram"),
            AccountSpec("systemProgram"),
            AccountSpec("rent"),
        ),
    ),
    STAKING: InstructionSpec(
        STAKING,
        (("amount", "u64"),),
        (
            AccountSpec("stakingData", writable=True),
            AccountSpec("stakeStateAccount", writable=True),
            AccountSpec("escrowAccount", writable=True),
            AccountSpec("stakerAccount", writable=True),
            AccountSpec("authority", signer=True),
            AccountSpec("tokenProgram"),
        ),
    ),
    UNSTAKING: InstructionSpec(
        UNSTAKING,
        (("amount", "u64"),),
        (
            AccountSpec("stakingData", writable=True),
            AccountSpec("stakeStateAccount", writable=True),
            AccountSpec("escrowAccount", writable=True),
            AccountSpec("reclaimer", writable=True),
            AccountSpec("authority", signer=True),
            AccountSpec("stakingAuthority"),
            AccountSpec("tokenProgram"),
        ),
    ),
    CLAIM_REWARD: InstructionSpec(
        CLAIM_REWARD,
        (("amount", "u64"),),
        (
            AccountSpec("stakingData", writable=True),
            AccountSpec("stakeStateAccount", writable=True),
            AccountSpec("rewarderAccount", writable=True),
            AccountSpec("claimer", writable=True),
            AccountSpec("authority", signer=True),
            AccountSpec("stakingAuthority"),
            AccountSpec("tokenProgram"),
        ),
    ),
    FUNDING: InstructionSpec(
        FUNDING,
        (("amount", "u64"), ("timeframeInSecond", "u64")),
        (
            AccountSpec("stakingData", writable=True),
            AccountSpec("rewarderAccount", writable=True),
            AccountSpec("funderAccount", writable=True),
            AccountSpec("authority", signer=True),
            AccountSpec("tokenProgram"),
        ),
    ),
    SET_MAX_APY: InstructionSpec(
        SET_MAX_APY,
        (("apyMax", "u32"),),
        (
            AccountSpec("stakingData", writable=True),
            AccountSpec("authority", signer=True),
        ),
    ),
}


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{snake_case(name)}".encode("utf-8")).digest()[:8]


def _spec_from_idl(entry: Mapping[str, Any]) -> InstructionSpec:
    args = []
    for arg in entry.get("args") or []:
        arg_type = arg["type"]
        if not isinstance(arg_type, str) or arg_type not in _ARG_LAYOUTS:
            raise ValueError(f"unsupported argument type {arg_type!r} in instruction {entry['name']}")
        args.append((camel_case(arg["name"]), arg_type))
    accounts = []
    for account in entry.get("accounts") or []:
        accounts.append(
            AccountSpec(
                camel_case(account["name"]),
                writable=bool(account.get("isMut", account.get("writable", False))),
                signer=bool(account.get("isSigner", account.get("signer", False))),
            )
        )
    return InstructionSpec(snake_case(entry["name"]), tuple(args), tuple(accounts))


class InstructionCoder:
    def __init__(self, program_id: Pubkey, idl: Optional[Mapping[str, Any]] = None) -> None:
        self.program_id = program_id
        self._specs: Dict[str, InstructionSpec] = dict(_DEFAULT_SPECS)
        for entry in (idl or {}).get("instructions") or []:
            spec = _spec_from_idl(entry)
            self._specs[spec.name] = spec
        self.logger = logging.getLogger(self.__class__.__name__)

    def spec(self, name: str) -> InstructionSpec:
        try:
            return self._specs[snake_case(name)]
        except KeyError as exc:
            raise ValueError(f"unknown instruction {name!r}") from exc

    def encode_data(self, name: str, args: Sequence[int]) -> bytes:
        spec = self.spec(name)
        if len(args) != len(spec.args):
            raise ValueError(f"{spec.name} takes {len(spec.args)} arguments, got {len(args)}")
        chunks = [instruction_discriminator(spec.name)]
        for (arg_name, arg_type), value in zip(spec.args, args):
            try:
                chunks.append(_ARG_LAYOUTS[arg_type].pack(value))
            except struct.error as exc:
                raise ValueError(f"argument {arg_name}={value!r} does not fit {arg_type}") from exc
        return b"".join(chunks)

    def build(
        self,
        name: str,
        args: Sequence[int],
        accounts: Mapping[str, Pubkey],
        extra_signers: Sequence[str] = (),
    ) -> Instruction:
        """Build an instruction; ``accounts`` is keyed by camelCase account name."""
        spec = self.spec(name)
        metas: List[AccountMeta] = []
        for account in spec.accounts:
            pubkey = accounts.get(account.name)
            if pubkey is None:
                raise ValueError(f"missing account {account.name} for {spec.name}")
            signer = account.signer or account.name in extra_signers
            metas.append(AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=account.writable))
        data = self.encode_data(name, args)
        self.logger.debug("Encoded %s with %d accounts (%d bytes)", spec.name, len(metas), len(data))
        return Instruction(self.program_id, data, metas)
