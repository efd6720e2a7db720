"""High level operations against the deployed staking program.

Every call takes an explicit ``StakingContext`` carrying the RPC connection
and the signing keypair; nothing is kept in module or process globals.
Program failures come back as ``TxResult`` values, client failures raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import RENT
from solders.transaction import Transaction

from . import instructions as ix
from .accounts import IdlAccountCoder, StakingPool, StakingState
from .addresses import (
    TOKEN_PROGRAM_ID,
    PoolAddresses,
    PoolAddressingMode,
    SeedScheme,
    get_associated_token_address,
    resolve_pool_addresses,
    staker_state_address,
    staking_authority_address,
)
from .errors import ConfigurationError, RPCError, TxResult, load_error_table, to_staking_error
from .reward import get_gained_reward, project_for_staker
from .rpc import SolanaRPCClient

POOL_NOT_INITIALIZED = "stakingData didn't init"
STATE_NOT_INITIALIZED = "stakingState didn't init"


@dataclass(frozen=True)
class StakingContext:
    rpc: SolanaRPCClient
    signer: Keypair

    @property
    def public_key(self) -> Pubkey:
        return self.signer.pubkey()


class StakingProgram:
    def __init__(
        self,
        program_id: Pubkey,
        idl: Optional[Mapping[str, Any]] = None,
        addressing_mode: PoolAddressingMode = PoolAddressingMode.DERIVED,
        seed_scheme: SeedScheme = SeedScheme.CURRENT,
        confirm_timeout_seconds: float = 60.0,
    ) -> None:
        self.program_id = program_id
        self.idl = idl
        self.addressing_mode = addressing_mode
        self.seed_scheme = seed_scheme
        self.confirm_timeout_seconds = confirm_timeout_seconds
        self.errors = load_error_table(idl)
        self.coder = ix.InstructionCoder(program_id, idl)
        self.accounts = IdlAccountCoder(idl) if idl else None
        self.logger = logging.getLogger(self.__class__.__name__)

    # -- account reads -------------------------------------------------

    def _account_coder(self) -> IdlAccountCoder:
        if self.accounts is None:
            raise ConfigurationError("An IDL is required to decode staking accounts; set 'idl_path'.")
        return self.accounts

    async def fetch_pool(self, ctx: StakingContext, pool: Pubkey) -> Optional[StakingPool]:
        data = await ctx.rpc.get_account_info(pool)
        if data is None:
            self.logger.info("Pool account %s does not exist", pool)
            return None
        return self._account_coder().decode_pool(data)

    async def fetch_state(self, ctx: StakingContext, state: Pubkey) -> Optional[StakingState]:
        data = await ctx.rpc.get_account_info(state)
        if data is None:
            self.logger.info("Staker state account %s does not exist", state)
            return None
        return self._account_coder().decode_state(data)

    def pool_addresses(
        self,
        initializer: Optional[Pubkey] = None,
        mint: Optional[Pubkey] = None,
        pool: Optional[Pubkey] = None,
    ) -> PoolAddresses:
        return resolve_pool_addresses(
            self.program_id,
            self.addressing_mode,
            initializer=initializer,
            mint=mint,
            pool=pool,
            scheme=self.seed_scheme,
        )

    def staker_state_address(self, pool: Pubkey, staker: Pubkey) -> Pubkey:
        address, _ = staker_state_address(pool, staker, self.program_id)
        return address

    def staking_authority(self, pool: Pubkey, mint: Optional[Pubkey] = None) -> Pubkey:
        address, _ = staking_authority_address(pool, self.program_id, self.seed_scheme, mint)
        return address

    async def gained_reward(self, ctx: StakingContext, pool: Pubkey, staker: Optional[Pubkey] = None) -> int:
        pool_data = await self.fetch_pool(ctx, pool)
        state_data = await self.fetch_state(ctx, self.staker_state_address(pool, staker or ctx.public_key))
        if pool_data is None or state_data is None:
            return 0
        return get_gained_reward(pool_data, state_data)

    async def projected_reward(self, ctx: StakingContext, pool: Pubkey, staker: Optional[Pubkey] = None) -> int:
        pool_data = await self.fetch_pool(ctx, pool)
        state_data = await self.fetch_state(ctx, self.staker_state_address(pool, staker or ctx.public_key))
        if pool_data is None or state_data is None:
            return 0
        now_ts = await ctx.rpc.get_now_ts()
        return project_for_staker(pool_data, state_data, now_ts)

    # -- transactions --------------------------------------------------

    async def _send(
        self,
        ctx: StakingContext,
        instructions: Sequence[Instruction],
        extra_signers: Sequence[Keypair] = (),
    ) -> TxResult[str]:
        blockhash = await ctx.rpc.get_latest_blockhash()
        message = Message.new_with_blockhash(list(instructions), ctx.public_key, blockhash)
        transaction = Transaction([ctx.signer, *extra_signers], message, blockhash)
        signature = await ctx.rpc.send_transaction(bytes(transaction))
        succeeded, err = await ctx.rpc.confirm_transaction(signature, self.confirm_timeout_seconds)
        if succeeded:
            return TxResult.success(signature, signature=signature)
        logs: List[str] = []
        try:
            logs = await ctx.rpc.get_transaction_logs(signature)
        except RPCError as exc:
            self.logger.warning("Could not load logs for failed transaction %s: %s", signature, exc)
        error = to_staking_error(self.errors, err, logs)
        self.logger.warning("Transaction %s rejected by program: %s", signature, error)
        return TxResult(error=error, signature=signature)

    async def _execute(
        self,
        ctx: StakingContext,
        name: str,
        args: Sequence[int],
        accounts: Dict[str, Pubkey],
        value: Any,
        extra_signers: Sequence[Keypair] = (),
        extra_signer_names: Sequence[str] = (),
    ) -> TxResult[Any]:
        instruction = self.coder.build(name, args, accounts, extra_signer_names)
        self.logger.info("Sending %s as %s", name, ctx.public_key)
        sent = await self._send(ctx, [instruction], extra_signers)
        if not sent.ok:
            return TxResult(error=sent.error, signature=sent.signature)
        return TxResult.success(value, signature=sent.signature)

    async def _load_pool_and_state(self, ctx: StakingContext, pool: Pubkey):
        pool_data = await self.fetch_pool(ctx, pool)
        if pool_data is None:
            return None, None, TxResult.failure(POOL_NOT_INITIALIZED)
        state = self.staker_state_address(pool, ctx.public_key)
        state_data = await self.fetch_state(ctx, state)
        if state_data is None:
            return pool_data, state, TxResult.failure(STATE_NOT_INITIALIZED)
        return pool_data, state, None

    async def initialize(
        self,
        ctx: StakingContext,
        funder_authority: Pubkey,
        mint: Pubkey,
        apy_max: int,
        min_timeframe_in_second: int,
        min_stake_period: int,
        pool_keypair: Optional[Keypair] = None,
    ) -> TxResult[PoolAddresses]:
        """Create the pool. Generated pools co-sign with ``pool_keypair`` or a fresh keypair."""
        extra_signers: List[Keypair] = []
        signer_names: List[str] = []
        if self.addressing_mode is PoolAddressingMode.GENERATED:
            if pool_keypair is not None and not isinstance(pool_keypair, Keypair):
                raise ValueError("generated pools are created by their own keypair, not a bare address")
            addresses = self.pool_addresses(mint=mint, pool=pool_keypair.pubkey() if pool_keypair is not None else None)
            signer = pool_keypair if pool_keypair is not None else addresses.pool_keypair
            addresses = replace(addresses, pool_keypair=signer)
            extra_signers.append(signer)
            signer_names.append("stakingData")
        else:
            if pool_keypair is not None:
                raise ValueError("derived pools have no keypair; drop the pool keypair or use generated addressing")
            addresses = self.pool_addresses(initializer=ctx.public_key, mint=mint)
        accounts = {
            "stakingData": addresses.pool,
            "funderAuthority": funder_authority,
            "escrowAccount": addresses.escrow,
            "rewarderAccount": addresses.rewarder,
            "authority": ctx.public_key,
            "mintAddress": mint,
            "tokenProgram": TOKEN_PROGRAM_ID,
            "systemProgram": SYSTEM_PROGRAM_ID,
            "rent": RENT,
        }
        return await self._execute(
            ctx,
            ix.INITIALIZE,
            [apy_max, min_timeframe_in_second, min_stake_period],
            accounts,
            addresses,
            extra_signers,
            signer_names,
        )

    async def initialize_stake_state(self, ctx: StakingContext, pool: Pubkey) -> TxResult[Pubkey]:
        if await self.fetch_pool(ctx, pool) is None:
            return TxResult.failure(POOL_NOT_INITIALIZED)
        state = self.staker_state_address(pool, ctx.public_key)
        accounts = {
            "stakingData": pool,
            "stakeStateAccount": state,
            "authority": ctx.public_key,
            "tokenProgram": TOKEN_PROGRAM_ID,
            "systemProgram": SYSTEM_PROGRAM_ID,
            "rent": RENT,
        }
        return await self._execute(ctx, ix.INITIALIZE_STAKE_STATE, [], accounts, state)

    async def stake(
        self,
        ctx: StakingContext,
        pool: Pubkey,
        amount: int,
        staker_account: Optional[Pubkey] = None,
    ) -> TxResult[int]:
        pool_data, state, failure = await self._load_pool_and_state(ctx, pool)
        if failure is not None:
            return failure
        accounts = {
            "stakingData": pool,
            "stakeStateAccount": state,
            "escrowAccount": pool_data.escrow_account,
            "stakerAccount": staker_account or get_associated_token_address(ctx.public_key, pool_data.mint_address),
            "authority": ctx.public_key,
            "tokenProgram": TOKEN_PROGRAM_ID,
        }
        return await self._execute(ctx, ix.STAKING, [amount], accounts, amount)

    async def unstake(
        self,
        ctx: StakingContext,
        pool: Pubkey,
        amount: int,
        reclaimer: Optional[Pubkey] = None,
    ) -> TxResult[int]:
        pool_data, state, failure = await self._load_pool_and_state(ctx, pool)
        if failure is not None:
            return failure
        accounts = {
            "stakingData": pool,
            "stakeStateAccount": state,
            "escrowAccount": pool_data.escrow_account,
            "reclaimer": reclaimer or get_associated_token_address(ctx.public_key, pool_data.mint_address),
            "authority": ctx.public_key,
            "stakingAuthority": self.staking_authority(pool, pool_data.mint_address),
            "tokenProgram": TOKEN_PROGRAM_ID,
        }
        return await self._execute(ctx, ix.UNSTAKING, [amount], accounts, amount)

    async def claim_reward(
        self,
        ctx: StakingContext,
        pool: Pubkey,
        amount: int,
        claimer: Optional[Pubkey] = None,
    ) -> TxResult[int]:
        pool_data, state, failure = await self._load_pool_and_state(ctx, pool)
        if failure is not None:
            return failure
        accounts = {
            "stakingData": pool,
            "stakeStateAccount": state,
            "rewarderAccount": pool_data.rewarder_account,
            "claimer": claimer or get_associated_token_address(ctx.public_key, pool_data.mint_address),
            "authority": ctx.public_key,
            "stakingAuthority": self.staking_authority(pool, pool_data.mint_address),
            "tokenProgram": TOKEN_PROGRAM_ID,
        }
        return await self._execute(ctx, ix.CLAIM_REWARD, [amount], accounts, amount)

    async def fund(
        self,
        ctx: StakingContext,
        pool: Pubkey,
        amount: int,
        timeframe_in_second: int,
        funder_account: Optional[Pubkey] = None,
    ) -> TxResult[int]:
        pool_data = await self.fetch_pool(ctx, pool)
        if pool_data is None:
            return TxResult.failure(POOL_NOT_INITIALIZED)
        accounts = {
            "stakingData": pool,
            "rewarderAccount": pool_data.rewarder_account,
            "funderAccount": funder_account or get_associated_token_address(ctx.public_key, pool_data.mint_address),
            "authority": ctx.public_key,
            "tokenProgram": TOKEN_PROGRAM_ID,
        }
        return await self._execute(ctx, ix.FUNDING, [amount, timeframe_in_second], accounts, amount)

    async def set_max_apy(self, ctx: StakingContext, pool: Pubkey, apy_max: int) -> TxResult[int]:
        if await self.fetch_pool(ctx, pool) is None:
            return TxResult.failure(POOL_NOT_INITIALIZED)
        accounts = {
            "stakingData": pool,
            "authority": ctx.public_key,
        }
        return await self._execute(ctx, ix.SET_MAX_APY, [apy_max], accounts, apy_max)
