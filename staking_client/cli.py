"""Command line front end for the staking program client.

Usage examples::

    staking-client --config config.cfg addresses --mint <MINT>
    staking-client pool <POOL>
    staking-client stake <POOL> 1000
    staking-client project 800 1000 1000 0 30 1000 0 30 30
    staking-client balance --mint <MINT>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict, fields, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .accounts import StakingPool, StakingState
from .addresses import get_associated_token_address
from .config import CONFIG_FILENAME, load_config, load_idl, load_keypair
from .errors import ConfigurationError, StakingClientError, TxResult
from .program import StakingContext, StakingProgram
from .reward import calculate_reward, get_gained_reward, project_for_staker
from .rpc import SolanaRPCClient

LOGGER_NAME = "staking_client"
TRANSACTION_COMMANDS = {"initialize", "init-state", "stake", "unstake", "claim", "fund", "set-max-apy"}
WALLET_COMMANDS = {"balance", "airdrop"}


def _pubkey(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except Exception as exc:  # pylint: disable=broad-except
        raise argparse.ArgumentTypeError(f"invalid public key: {value}") from exc


def _jsonable(value: Any) -> Any:
    if isinstance(value, Pubkey):
        return str(value)
    if isinstance(value, Keypair):
        # Never serialize the secret half.
        return str(value.pubkey())
    if is_dataclass(value):
        return {item.name: _jsonable(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="staking-client", description="Client for the on-chain staking program.")
    parser.add_argument("--config", type=Path, default=Path(CONFIG_FILENAME), help="Path to the JSON configuration file.")
    parser.add_argument("--json", dest="json_output", type=Path, default=None, help="Also write the result as JSON to this path.")
    sub = parser.add_subparsers(dest="command", required=True)

    addresses = sub.add_parser("addresses", help="Derive the program accounts for a pool.")
    addresses.add_argument("--mint", type=_pubkey)
    addresses.add_argument("--initializer", type=_pubkey, help="Pool initializer; defaults to the configured keypair.")
    addresses.add_argument("--pool", type=_pubkey, help="Existing pool account (required for generated pools).")
    addresses.add_argument("--staker", type=_pubkey, help="Also derive this staker's state account.")

    pool = sub.add_parser("pool", help="Show pool totals and the staker table.")
    pool.add_argument("pool", type=_pubkey)

    state = sub.add_parser("state", help="Show a staker's state, recorded and projected reward.")
    state.add_argument("pool", type=_pubkey)
    state.add_argument("--staker", type=_pubkey)

    project = sub.add_parser("project", help="Project a reward offline from explicit inputs.")
    for name in (
        "apy_max", "pool_staked", "pool_reward", "timeframe_start", "timeframe_end",
        "staked", "stake_start_time", "min_stake_period", "now_ts",
    ):
        project.add_argument(name, type=int)

    initialize = sub.add_parser("initialize", help="Create a staking pool for a mint.")
    initialize.add_argument("--funder", type=_pubkey, required=True)
    initialize.add_argument("--mint", type=_pubkey, required=True)
    initialize.add_argument("--apy-max", type=int, required=True)
    initialize.add_argument("--min-timeframe", type=int, required=True, help="Minimum funding timeframe in seconds.")
    initialize.add_argument("--min-stake-period", type=int, required=True, help="Minimum stake period in seconds.")
    initialize.add_argument("--pool-keypair", help="Keypair file for a generated pool account; a new one is created when omitted.")

    init_state = sub.add_parser("init-state", help="Create the signer's staker state for a pool.")
    init_state.add_argument("pool", type=_pubkey)

    for name, help_text, account_flag in (
        ("stake", "Stake tokens into a pool.", "--token-account"),
        ("unstake", "Withdraw staked tokens.", "--token-account"),
        ("claim", "Claim gained reward.", "--token-account"),
    ):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("pool", type=_pubkey)
        command.add_argument("amount", type=int)
        command.add_argument(account_flag, dest="token_account", type=_pubkey, help="Token account; defaults to the associated account.")

    fund = sub.add_parser("fund", help="Fund the rewarder for a new timeframe.")
    fund.add_argument("pool", type=_pubkey)
    fund.add_argument("amount", type=int)
    fund.add_argument("timeframe", type=int, help="Timeframe length in seconds.")
    fund.add_argument("--token-account", dest="token_account", type=_pubkey)

    set_apy = sub.add_parser("set-max-apy", help="Change the pool's APY ceiling.")
    set_apy.add_argument("pool", type=_pubkey)
    set_apy.add_argument("apy_max", type=int)

    balance = sub.add_parser("balance", help="Show SOL and token balances of a wallet.")
    balance.add_argument("--owner", type=_pubkey, help="Wallet to inspect; defaults to the configured keypair.")
    balance.add_argument("--mint", type=_pubkey, help="Also show the associated token account balance for this mint.")

    airdrop = sub.add_parser("airdrop", help="Top up a wallet on a test validator.")
    airdrop.add_argument("lamports", type=int, help="Balance to reach, in lamports.")
    airdrop.add_argument("--owner", type=_pubkey, help="Wallet to fund; defaults to the configured keypair.")
    return parser


def render_pool(pool: StakingPool, logger: logging.Logger) -> None:
    summary = pd.DataFrame(
        [
            ("mint", str(pool.mint_address)),
            ("escrow", str(pool.escrow_account)),
            ("rewarder", str(pool.rewarder_account)),
            ("funder authority", str(pool.funder_authority)),
            ("apy max", pool.apy_max),
            ("total staked", pool.total_staked),
            ("rewarder balance", pool.rewarder_balance),
            ("total funded", pool.total_funded),
            ("total reward paid", pool.total_reward_paid),
            ("pool reward", pool.pool_reward),
            ("timeframe started", pool.timeframe_started),
            ("timeframe seconds", pool.timeframe_in_second),
            ("payout reward", pool.payout_reward),
            ("min stake period", pool.min_stake_period),
        ],
        columns=["field", "value"],
    )
    logger.info("Pool Summary:\n%s", summary.to_string(index=False, justify="center"))

    if not pool.stakers:
        logger.warning("No stakers recorded in pool")
    else:
        stakers = pd.DataFrame([asdict(entry) for entry in pool.stakers])
        logger.info("Stakers:\n%s", stakers.to_string(index=False, justify="center"))

    for violation in pool.check_invariants():
        logger.warning("Pool invariant violated: %s", violation)


def render_state(state: StakingState, gained: int, projected: int, logger: logging.Logger) -> None:
    frame = pd.DataFrame(
        [
            ("pool", str(state.staking_account)),
            ("owner", str(state.owner_address)),
            ("total staked", state.total_staked),
            ("total rewarded", state.total_rewarded),
            ("last staked", state.last_staked),
            ("last rewarded", state.last_rewarded),
            ("gained reward", gained),
            ("projected reward", projected),
        ],
        columns=["field", "value"],
    )
    logger.info("Staker State:\n%s", frame.to_string(index=False, justify="center"))


async def wallet_balances(
    client: SolanaRPCClient,
    owner: Pubkey,
    mint: Optional[Pubkey],
    logger: logging.Logger,
) -> Dict[str, Any]:
    balances: Dict[str, Any] = {"owner": owner, "lamports": await client.get_balance(owner)}
    rows: List[tuple] = [("SOL (lamports)", str(owner), balances["lamports"])]
    if mint is not None:
        token_account = get_associated_token_address(owner, mint)
        balances["token_account"] = token_account
        balances["token_amount"] = await client.get_token_account_balance(token_account)
        rows.append(("token", str(token_account), balances["token_amount"]))
    frame = pd.DataFrame(rows, columns=["asset", "account", "amount"])
    logger.info("Balances:\n%s", frame.to_string(index=False, justify="center"))
    return balances


def write_json_output(output_path: Path, payload: Dict[str, Any], logger: logging.Logger) -> None:
    document = {"generated_at": datetime.now(tz=timezone.utc).isoformat(), **_jsonable(payload)}
    output_path.write_text(json.dumps(document, indent=2, default=str), encoding="utf-8")
    logger.info("Wrote JSON report to %s", output_path)


def _report_tx(result: TxResult, logger: logging.Logger) -> Dict[str, Any]:
    if result.ok:
        logger.info("Transaction confirmed: %s", result.signature)
        return {"ok": True, "value": result.value, "signature": result.signature}
    logger.error("Transaction failed: %s", result.error.message)
    return {"ok": False, "error": result.error.message, "code": result.error.code, "signature": result.signature}


async def run_transaction(
    args: argparse.Namespace,
    program: StakingProgram,
    ctx: StakingContext,
) -> TxResult:
    command = args.command
    if command == "initialize":
        return await program.initialize(
            ctx, args.funder, args.mint, args.apy_max, args.min_timeframe, args.min_stake_period,
            pool_keypair=load_keypair(args.pool_keypair) if args.pool_keypair else None,
        )
    if command == "init-state":
        return await program.initialize_stake_state(ctx, args.pool)
    if command == "stake":
        return await program.stake(ctx, args.pool, args.amount, args.token_account)
    if command == "unstake":
        return await program.unstake(ctx, args.pool, args.amount, args.token_account)
    if command == "claim":
        return await program.claim_reward(ctx, args.pool, args.amount, args.token_account)
    if command == "fund":
        return await program.fund(ctx, args.pool, args.amount, args.timeframe, args.token_account)
    if command == "set-max-apy":
        return await program.set_max_apy(ctx, args.pool, args.apy_max)
    raise ValueError(f"unknown transaction command {command}")


async def run(args: argparse.Namespace, config: Dict[str, Any], logger: logging.Logger) -> int:
    program = StakingProgram(
        Pubkey.from_string(config["program_id"]),
        idl=load_idl(config["idl_path"]),
        addressing_mode=config["pool_addressing"],
        seed_scheme=config["seed_scheme"],
        confirm_timeout_seconds=config["confirm_timeout_seconds"],
    )
    payload: Dict[str, Any] = {"command": args.command}
    exit_code = 0

    if args.command == "addresses":
        initializer = args.initializer or (None if args.pool else load_keypair(config["keypair_path"]).pubkey())
        addresses = program.pool_addresses(initializer=initializer, mint=args.mint, pool=args.pool)
        rows: List[tuple] = [
            ("pool", str(addresses.pool)),
            ("escrow", str(addresses.escrow)),
            ("rewarder", str(addresses.rewarder)),
            ("staking authority", str(addresses.staking_authority)),
        ]
        if args.staker:
            rows.append(("staker state", str(addresses.staker_state(args.staker, program.program_id))))
        frame = pd.DataFrame(rows, columns=["account", "address"])
        logger.info("Derived Accounts (%s):\n%s", addresses.mode.value, frame.to_string(index=False))
        payload["addresses"] = dict(rows)
    elif args.command == "project":
        reward = calculate_reward(
            args.apy_max, args.pool_staked, args.pool_reward, args.timeframe_start, args.timeframe_end,
            args.staked, args.stake_start_time, args.min_stake_period, args.now_ts,
        )
        logger.info("Projected reward: %.6f (token amount %d)", reward, int(reward))
        payload["reward"] = reward
        payload["amount"] = int(reward)
    elif args.command in WALLET_COMMANDS:
        owner = args.owner or load_keypair(config["keypair_path"]).pubkey()
        async with SolanaRPCClient(
            config["rpc_endpoints"], config["concurrency_limit"], commitment=config["commitment"]
        ) as client:
            if args.command == "airdrop":
                lamports = await client.ensure_balance(owner, args.lamports, config["confirm_timeout_seconds"])
                logger.info("Balance of %s: %d lamports", owner, lamports)
                payload.update({"owner": owner, "lamports": lamports})
            else:
                payload.update(await wallet_balances(client, owner, args.mint, logger))
    else:
        signer = load_keypair(config["keypair_path"])
        async with SolanaRPCClient(
            config["rpc_endpoints"], config["concurrency_limit"], commitment=config["commitment"]
        ) as client:
            ctx = StakingContext(client, signer)
            if args.command == "pool":
                pool = await program.fetch_pool(ctx, args.pool)
                if pool is None:
                    logger.error("Pool %s does not exist", args.pool)
                    return 1
                render_pool(pool, logger)
                payload["pool"] = pool
            elif args.command == "state":
                staker = args.staker or ctx.public_key
                pool = await program.fetch_pool(ctx, args.pool)
                state = await program.fetch_state(ctx, program.staker_state_address(args.pool, staker))
                if pool is None or state is None:
                    logger.error("Pool or staker state for %s does not exist", staker)
                    return 1
                now_ts = await client.get_now_ts()
                gained = get_gained_reward(pool, state)
                projected = project_for_staker(pool, state, now_ts)
                render_state(state, gained, projected, logger)
                payload.update({"state": state, "gained_reward": gained, "projected_reward": projected, "now_ts": now_ts})
            elif args.command in TRANSACTION_COMMANDS:
                result = await run_transaction(args, program, ctx)
                payload["result"] = _report_tx(result, logger)
                exit_code = 0 if result.ok else 1

    json_path = args.json_output
    if json_path is None and "json" in config["output_format"]:
        json_path = Path(config.get("json_output_file") or "staking_report.json")
    if json_path is not None:
        write_json_output(json_path, payload, logger)
    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.INFO)
        logging.getLogger(LOGGER_NAME).error("Fatal error: %s", exc)
        raise SystemExit(1) from exc

    logging.basicConfig(
        level=getattr(logging, str(config.get("log_level", "INFO")).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger(LOGGER_NAME)

    try:
        exit_code = asyncio.run(run(args, config, logger))
    except (StakingClientError, ValueError) as exc:
        logger.error("Fatal error: %s", exc)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        logger.warning("Execution interrupted by user")
        raise SystemExit(130) from None
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
