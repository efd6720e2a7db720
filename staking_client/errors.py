"""Error taxonomy and program error table lookup.

Client-side failures (bad configuration, RPC trouble, undecodable accounts)
are raised as exceptions. Failures reported by the staking program itself are
returned as values: every transaction helper hands back a ``TxResult`` whose
``error`` carries the program's custom error code and its human readable
message resolved through the IDL error table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, List, Mapping, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

CUSTOM_ERROR_LOG_PREFIX = "Program log: Custom program error: "
UNKNOWN_ERROR_MESSAGE = "unknown error"

T = TypeVar("T")


class StakingClientError(RuntimeError):
    """Base class for errors raised by the staking client."""


class ConfigurationError(StakingClientError):
    """Raised when configuration is invalid."""


class RPCError(StakingClientError):
    """Raised when the Solana RPC returns an error response."""


class DerivationExhausted(StakingClientError):
    """Raised when no bump seed produces an off-curve program address."""


class AccountDecodeError(StakingClientError):
    """Raised when raw account data does not match the expected layout."""


@dataclass(frozen=True)
class ErrorEntry:
    code: int
    msg: str
    name: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ErrorEntry":
        return cls(code=int(raw["code"]), msg=str(raw.get("msg") or raw.get("name") or ""), name=str(raw.get("name", "")))


@dataclass(frozen=True)
class StakingError:
    code: Optional[int]
    message: str

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"{self.message} (code {self.code})"


@dataclass(frozen=True)
class TxResult(Generic[T]):
    """Outcome of a program call: either ``value`` or ``error`` is set."""

    value: Optional[T] = None
    error: Optional[StakingError] = None
    signature: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, signature: Optional[str] = None) -> "TxResult[T]":
        return cls(value=value, signature=signature)

    @classmethod
    def failure(cls, message: str, code: Optional[int] = None, signature: Optional[str] = None) -> "TxResult[T]":
        return cls(error=StakingError(code=code, message=message), signature=signature)


def load_error_table(idl: Optional[Mapping[str, Any]]) -> List[ErrorEntry]:
    if not idl:
        return []
    entries = [ErrorEntry.from_dict(raw) for raw in idl.get("errors") or []]
    return sorted(entries, key=lambda entry: entry.code)


def extract_custom_code(err: Any) -> Optional[int]:
    """Pull the custom error code out of a transaction error object.

    Accepts the JSON shape returned by ``getSignatureStatuses``:
    ``{"InstructionError": [index, {"Custom": code}]}``.
    """
    if not isinstance(err, Mapping):
        return None
    instruction_error = err.get("InstructionError")
    if not isinstance(instruction_error, (list, tuple)) or len(instruction_error) != 2:
        return None
    detail = instruction_error[1]
    if isinstance(detail, Mapping) and "Custom" in detail:
        try:
            return int(detail["Custom"])
        except (TypeError, ValueError):
            return None
    return None


def format_error(errors: Sequence[ErrorEntry], err: Any) -> str:
    code = extract_custom_code(err)
    if code is None:
        logger.debug("Unrecognized transaction error: %s", err)
        return UNKNOWN_ERROR_MESSAGE
    by_code = {entry.code: entry for entry in errors}
    if code in by_code:
        return by_code[code].msg
    return f"Custom error code= {code}"


def parse_error_number(errors: Sequence[ErrorEntry], logs: Optional[Sequence[str]]) -> Optional[str]:
    for line in logs or []:
        index = line.find(CUSTOM_ERROR_LOG_PREFIX)
        if index < 0:
            continue
        raw = line[index + len(CUSTOM_ERROR_LOG_PREFIX):].strip()
        try:
            number = int(raw, 16) if raw.lower().startswith("0x") else int(raw)
        except ValueError:
            logger.debug("Unparseable custom error number in log line: %s", line)
            return None
        idx = number % 100
        if 0 <= idx < len(errors):
            return errors[idx].msg
        return f"Custom error code= {number}"
    return None


def to_staking_error(errors: Sequence[ErrorEntry], err: Any, logs: Optional[Sequence[str]] = None) -> StakingError:
    code = extract_custom_code(err)
    message = format_error(errors, err)
    if message == UNKNOWN_ERROR_MESSAGE and logs:
        message = parse_error_number(errors, logs) or message
    return StakingError(code=code, message=message)
