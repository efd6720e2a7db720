"""JSON configuration for the staking client."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .addresses import PoolAddressingMode, SeedScheme
from .errors import ConfigurationError

CONFIG_FILENAME = "config.cfg"
DEFAULT_RPC_ENDPOINT = "http://127.0.0.1:8899"
DEFAULT_KEYPAIR_PATH = "~/.config/solana/id.json"
VALID_COMMITMENTS = {"processed", "confirmed", "finalized"}
VALID_OUTPUT_FORMATS = {"console", "json"}


def safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def _normalize_endpoints(candidates: Sequence[Any]) -> List[str]:
    endpoints: List[str] = []
    for endpoint in candidates:
        value = endpoint.strip() if isinstance(endpoint, str) else str(endpoint).strip()
        if value and value not in endpoints:
            endpoints.append(value)
    return endpoints


def _read_json(path: Path, label: str) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        try:
            return json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {label} {path}: {exc}") from exc


def load_config(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found at {config_path}")
    config = _read_json(config_path, "configuration file")
    if not isinstance(config, dict):
        raise ConfigurationError("Configuration file must contain a JSON object.")

    program_id = os.getenv("STAKING_PROGRAM_ID") or config.get("program_id")
    if not program_id:
        raise ConfigurationError("Configuration must include 'program_id'.")
    try:
        Pubkey.from_string(str(program_id).strip())
    except Exception as exc:  # pylint: disable=broad-except
        raise ConfigurationError(f"Invalid program id: {program_id}") from exc
    config["program_id"] = str(program_id).strip()

    env_endpoint = os.getenv("SOLANA_RPC_URL")
    if env_endpoint:
        resolved: Sequence[Any] = [env_endpoint]
    elif isinstance(config.get("rpc_endpoints"), list) and config["rpc_endpoints"]:
        resolved = config["rpc_endpoints"]
    elif isinstance(config.get("rpc_endpoint"), str) and config["rpc_endpoint"]:
        resolved = [config["rpc_endpoint"]]
    else:
        resolved = [DEFAULT_RPC_ENDPOINT]
    endpoints = _normalize_endpoints(resolved)
    if not endpoints:
        raise ConfigurationError("No valid RPC endpoints configured.")
    config["rpc_endpoints"] = endpoints
    config["rpc_endpoint"] = endpoints[0]

    addressing = str(config.get("pool_addressing", PoolAddressingMode.DERIVED.value)).strip().lower()
    try:
        config["pool_addressing"] = PoolAddressingMode(addressing)
    except ValueError as exc:
        raise ConfigurationError("'pool_addressing' must be either 'derived' or 'generated'.") from exc

    scheme = str(config.get("seed_scheme", SeedScheme.CURRENT.value)).strip().lower()
    try:
        config["seed_scheme"] = SeedScheme(scheme)
    except ValueError as exc:
        raise ConfigurationError("'seed_scheme' must be either 'current' or 'legacy'.") from exc

    commitment = str(config.get("commitment", "confirmed")).strip().lower()
    if commitment not in VALID_COMMITMENTS:
        raise ConfigurationError(f"'commitment' must be one of {sorted(VALID_COMMITMENTS)}.")
    config["commitment"] = commitment

    config["keypair_path"] = str(config.get("keypair_path") or DEFAULT_KEYPAIR_PATH)

    idl_path = config.get("idl_path")
    if idl_path:
        path = Path(idl_path).expanduser()
        if not path.is_absolute():
            path = config_path.parent / path
        config["idl_path"] = path
    else:
        config["idl_path"] = None

    concurrency_limit = safe_int(config.get("concurrency_limit")) or 4
    config["concurrency_limit"] = max(1, concurrency_limit)
    timeout = config.get("confirm_timeout_seconds", 60)
    try:
        config["confirm_timeout_seconds"] = max(1.0, float(timeout))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("'confirm_timeout_seconds' must be a number.") from exc

    formats = config.get("output_format", ["console"])
    if isinstance(formats, str):
        formats = [formats]
    formats = [str(fmt).strip().lower() for fmt in formats]
    unknown = [fmt for fmt in formats if fmt not in VALID_OUTPUT_FORMATS]
    if unknown:
        raise ConfigurationError(f"Unsupported output format(s): {', '.join(unknown)}")
    config["output_format"] = formats

    config.setdefault("log_level", "INFO")
    return config


def load_idl(path: Optional[Path]) -> Optional[Dict[str, Any]]:
    if path is None:
        return None
    if not path.exists():
        raise ConfigurationError(f"IDL file not found at {path}")
    idl = _read_json(path, "IDL file")
    if not isinstance(idl, dict):
        raise ConfigurationError(f"IDL file {path} must contain a JSON object.")
    return idl


def load_keypair(path: str) -> Keypair:
    expanded = Path(path).expanduser()
    if not expanded.exists():
        raise ConfigurationError(f"Keypair file not found at {expanded}")
    secret = _read_json(expanded, "keypair file")
    if not isinstance(secret, list) or len(secret) != 64:
        raise ConfigurationError(f"Keypair file {expanded} must hold a 64 byte secret key array")
    try:
        return Keypair.from_bytes(bytes(secret))
    except Exception as exc:  # pylint: disable=broad-except
        raise ConfigurationError(f"Invalid keypair file {expanded}: {exc}") from exc
