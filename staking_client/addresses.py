"""Deterministic account address derivation for the staking program.

Mirrors the program's own program-derived address (PDA) scheme so that the
client can locate every account without an on-chain round trip.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .errors import DerivationExhausted

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

STAKING_SEED = b"staking"
ESCROW_SEED = b"staking-escrow"
REWARDER_SEED = b"staking-rewarder"
STAKING_AUTHORITY_SEED = b"staking-author"
STAKER_SEED = b"staker"
LEGACY_STAKING_SEED = b"ser_staking"

SeedComponent = Union[bytes, Pubkey]


class PoolAddressingMode(enum.Enum):
    """How the pool (``stakingData``) account address is obtained."""

    DERIVED = "derived"
    GENERATED = "generated"


class SeedScheme(enum.Enum):
    """Seed label set of a deployed program revision."""

    CURRENT = "current"
    LEGACY = "legacy"


def _program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Optional[Pubkey]:
    try:
        return Pubkey.create_program_address(list(seeds), program_id)
    except ValueError:
        # On-curve candidate, or seeds the runtime would reject.
        return None


def derive(seed_label: bytes, components: Sequence[SeedComponent], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Find the program-derived address and bump for ``seed_label`` + ``components``.

    Bumps are searched from 255 down to 0; the first one that yields a valid
    program address wins, which matches ``Pubkey.find_program_address``.
    """
    seeds = [bytes(seed_label)] + [bytes(component) for component in components]
    for bump in range(255, -1, -1):
        address = _program_address(seeds + [bytes([bump])], program_id)
        if address is not None:
            return address, bump
    logger.error("No off-curve bump for seed %r under program %s", seed_label, program_id)
    raise DerivationExhausted(f"unable to find a viable program address for seed {seed_label!r}")


def staking_data_address(initializer: Pubkey, mint: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return derive(STAKING_SEED, [initializer, mint], program_id)


def escrow_address(pool: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return derive(ESCROW_SEED, [pool], program_id)


def rewarder_address(pool: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return derive(REWARDER_SEED, [pool], program_id)


def staking_authority_address(
    pool: Pubkey,
    program_id: Pubkey,
    scheme: SeedScheme = SeedScheme.CURRENT,
    mint: Optional[Pubkey] = None,
) -> Tuple[Pubkey, int]:
    """Escrow signer. The legacy revision seeds it with the mint and the pool."""
    if scheme is SeedScheme.LEGACY:
        if mint is None:
            raise ValueError("legacy seed scheme needs the mint to derive the staking authority")
        return derive(LEGACY_STAKING_SEED, [mint, pool], program_id)
    return derive(STAKING_AUTHORITY_SEED, [pool], program_id)


def staker_state_address(pool: Pubkey, staker: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return derive(STAKER_SEED, [pool, staker], program_id)


def get_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _ = derive(bytes(owner), [TOKEN_PROGRAM_ID, mint], ASSOCIATED_TOKEN_PROGRAM_ID)
    return address


@dataclass(frozen=True)
class PoolAddresses:
    pool: Pubkey
    escrow: Pubkey
    rewarder: Pubkey
    staking_authority: Pubkey
    mode: PoolAddressingMode
    pool_bump: Optional[int] = None
    pool_keypair: Optional[Keypair] = None

    def staker_state(self, staker: Pubkey, program_id: Pubkey) -> Pubkey:
        address, _ = staker_state_address(self.pool, staker, program_id)
        return address


def resolve_pool_addresses(
    program_id: Pubkey,
    mode: PoolAddressingMode,
    initializer: Optional[Pubkey] = None,
    mint: Optional[Pubkey] = None,
    pool: Optional[Pubkey] = None,
    scheme: SeedScheme = SeedScheme.CURRENT,
) -> PoolAddresses:
    """Locate the pool account and every account seeded from it.

    ``DERIVED`` pools come from ``"staking"`` + initializer + mint. ``GENERATED``
    pools are plain keypair accounts: pass ``pool`` to address an existing one,
    or omit it to mint a fresh keypair for ``initialize``.
    """
    pool_bump: Optional[int] = None
    pool_keypair: Optional[Keypair] = None
    if mode is PoolAddressingMode.DERIVED:
        if pool is None:
            if initializer is None or mint is None:
                raise ValueError("derived pool addressing needs the initializer and the mint")
            pool, pool_bump = staking_data_address(initializer, mint, program_id)
    elif pool is None:
        pool_keypair = Keypair()
        pool = pool_keypair.pubkey()
        logger.info("Generated new pool account %s", pool)

    escrow, _ = escrow_address(pool, program_id)
    rewarder, _ = rewarder_address(pool, program_id)
    authority, _ = staking_authority_address(pool, program_id, scheme, mint)
    return PoolAddresses(
        pool=pool,
        escrow=escrow,
        rewarder=rewarder,
        staking_authority=authority,
        mode=mode,
        pool_bump=pool_bump,
        pool_keypair=pool_keypair,
    )
