"""Async Solana JSON-RPC client used for chain queries and transaction submission."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import random
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.sysvar import CLOCK

from .accounts import Clock
from .errors import ConfigurationError, RPCError

MAX_RPC_RETRIES = 5
MAX_ENDPOINT_FAILURES = 3
RETRY_BACKOFF_SECONDS = 0.5
MAX_RETRY_BACKOFF_SECONDS = 8.0
RETRY_BACKOFF_JITTER = 0.25
RATE_LIMIT_STATUS_CODES = {429}
ENDPOINT_ROTATION_STATUS_CODES = {429, 502, 503, 504}
CONFIRM_POLL_SECONDS = 1.0
CONFIRMED_STATUSES = {"confirmed", "finalized"}


def summarize_payload(payload: Any, limit: int = 800) -> str:
    try:
        serialized = json.dumps(payload, default=str)
    except TypeError:
        serialized = str(payload)
    if len(serialized) > limit:
        return serialized[: limit - 3] + "..."
    return serialized


class SolanaRPCClient:
    def __init__(
        self,
        endpoints: Sequence[str],
        concurrency_limit: int = 4,
        commitment: str = "confirmed",
        timeout: float = 35.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = MAX_RPC_RETRIES,
    ) -> None:
        normalized: List[str] = []
        for endpoint in endpoints:
            value = endpoint.strip() if isinstance(endpoint, str) else str(endpoint).strip()
            if value and value not in normalized:
                normalized.append(value)
        if not normalized:
            raise ConfigurationError("At least one RPC endpoint must be provided")

        self.endpoints = normalized
        self.commitment = commitment
        self._current_index = 0
        self._timeout = timeout
        self._transport = transport
        self._max_retries = max(1, max_retries)
        self._client: Optional[httpx.AsyncClient] = None
        self._semaphore = asyncio.Semaphore(max(1, concurrency_limit))
        self._request_id = 0
        self._endpoint_failures: Dict[str, int] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    async def __aenter__(self) -> "SolanaRPCClient":
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def endpoint(self) -> str:
        return self.endpoints[self._current_index]

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        if self._client is None:
            raise RuntimeError("RPC client not initialized; use async context manager")

        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params or [],
        }
        payload_summary = summarize_payload(payload)

        attempt = 0
        while True:
            attempt += 1
            delay: Optional[float] = None
            async with self._semaphore:
                endpoint = self.endpoint
                try:
                    self.logger.debug(
                        "RPC Request -> method=%s attempt=%d endpoint=%s payload=%s",
                        method,
                        attempt,
                        endpoint,
                        payload_summary,
                    )
                    response = await self._client.post(endpoint, json=payload)
                    response.raise_for_status()
                    data = response.json()
                    self.logger.debug(
                        "RPC Response <- method=%s attempt=%d status=%s body=%s",
                        method,
                        attempt,
                        response.status_code,
                        summarize_payload(data, 400),
                    )
                except httpx.HTTPStatusError as exc:
                    status_code = exc.response.status_code if exc.response is not None else None
                    delay = self._compute_retry_delay(attempt, status_code)
                    if status_code in RATE_LIMIT_STATUS_CODES:
                        self.logger.info("Rate limit on %s attempt=%d via %s; backing off %.2fs", method, attempt, endpoint, delay)
                    else:
                        self.logger.warning("HTTP error on %s attempt %d via %s: %s", method, attempt, endpoint, exc)
                    if status_code in ENDPOINT_ROTATION_STATUS_CODES:
                        self._rotate_endpoint()
                    else:
                        self._record_endpoint_failure(endpoint)
                    if attempt >= self._max_retries:
                        raise RPCError(f"HTTP error on method {method}: {exc}") from exc
                except httpx.RequestError as exc:
                    self.logger.warning("Request error on %s attempt %d via %s: %s", method, attempt, endpoint, exc)
                    self._record_endpoint_failure(endpoint)
                    self._rotate_endpoint()
                    if attempt >= self._max_retries:
                        raise RPCError(f"Request error on method {method}: {exc}") from exc
                    delay = self._compute_retry_delay(attempt, None)
                except ValueError as exc:
                    raise RPCError(f"Invalid JSON from {endpoint} on method {method}: {exc}") from exc
                else:
                    if "error" in data:
                        error = data["error"] or {}
                        message = error.get("message", "Unknown RPC error")
                        # JSON-RPC errors are deterministic; retrying would not help.
                        raise RPCError(f"RPC error on method {method}: {message}")
                    self._endpoint_failures.pop(endpoint, None)
                    return data.get("result")

            if delay is None:
                delay = self._compute_retry_delay(attempt, None)
            await asyncio.sleep(delay)

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def _rotate_endpoint(self) -> Optional[str]:
        if len(self.endpoints) < 2:
            return None
        self._current_index = (self._current_index + 1) % len(self.endpoints)
        rotated = self.endpoints[self._current_index]
        self.logger.warning("Switching RPC endpoint to %s", rotated)
        return rotated

    def _record_endpoint_failure(self, endpoint: str) -> None:
        count = self._endpoint_failures.get(endpoint, 0) + 1
        self._endpoint_failures[endpoint] = count
        if count >= MAX_ENDPOINT_FAILURES and len(self.endpoints) > 1 and endpoint in self.endpoints:
            self.logger.error("Removing RPC endpoint %s after %d consecutive failures", endpoint, count)
            self.endpoints.remove(endpoint)
            self._endpoint_failures.pop(endpoint, None)
            if self._current_index >= len(self.endpoints):
                self._current_index = 0

    def _compute_retry_delay(self, attempt: int, status_code: Optional[int]) -> float:
        base = RETRY_BACKOFF_SECONDS
        if status_code in RATE_LIMIT_STATUS_CODES:
            backoff = base * (2 ** (attempt - 1))
        else:
            backoff = base * attempt
        delay = min(backoff, MAX_RETRY_BACKOFF_SECONDS)
        jitter = random.uniform(0.0, RETRY_BACKOFF_JITTER)
        return delay + jitter

    async def get_account_info(self, address: Pubkey) -> Optional[bytes]:
        result = await self.request(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None
        data = value.get("data")
        if isinstance(data, list) and data:
            return base64.b64decode(data[0])
        if isinstance(data, str):
            return base64.b64decode(data)
        raise RPCError(f"Unexpected account data encoding for {address}: {summarize_payload(data, 120)}")

    async def get_clock(self) -> Clock:
        data = await self.get_account_info(CLOCK)
        if data is None:
            raise RPCError("Clock sysvar account is unavailable")
        return Clock.from_bytes(data)

    async def get_now_ts(self) -> int:
        clock = await self.get_clock()
        return clock.unix_timestamp

    async def get_balance(self, address: Pubkey) -> int:
        result = await self.request("getBalance", [str(address), {"commitment": self.commitment}])
        return int((result or {}).get("value") or 0)

    async def get_token_account_balance(self, address: Pubkey) -> int:
        try:
            result = await self.request("getTokenAccountBalance", [str(address), {"commitment": self.commitment}])
        except RPCError as exc:
            # Missing token accounts report an RPC error; the balance is zero then.
            self.logger.warning("Token balance unavailable for %s: %s", address, exc)
            return 0
        value = (result or {}).get("value") or {}
        return int(value.get("amount") or 0)

    async def get_latest_blockhash(self) -> Hash:
        result = await self.request("getLatestBlockhash", [{"commitment": self.commitment}])
        value = (result or {}).get("value") or {}
        blockhash = value.get("blockhash")
        if not blockhash:
            raise RPCError("Failed to retrieve a recent blockhash")
        return Hash.from_string(blockhash)

    async def send_transaction(self, raw_transaction: bytes, skip_preflight: bool = True) -> str:
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        signature = await self.request(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self.commitment,
                },
            ],
        )
        if not signature:
            raise RPCError("sendTransaction returned no signature")
        self.logger.info("Submitted transaction %s", signature)
        return str(signature)

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        result = await self.request(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = (result or {}).get("value") or []
        return statuses[0] if statuses else None

    async def confirm_transaction(
        self,
        signature: str,
        timeout_seconds: float = 60.0,
        poll_seconds: float = CONFIRM_POLL_SECONDS,
    ) -> Tuple[bool, Any]:
        """Poll until the signature lands; returns ``(succeeded, err)``."""
        deadline = time.monotonic() + timeout_seconds
        while True:
            status = await self.get_signature_status(signature)
            if status is not None:
                err = status.get("err")
                if err is not None:
                    self.logger.warning("Transaction %s failed: %s", signature, err)
                    return False, err
                if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return True, None
            if time.monotonic() >= deadline:
                raise RPCError(f"Timed out waiting for confirmation of {signature}")
            await asyncio.sleep(poll_seconds)

    async def get_transaction_logs(self, signature: str) -> List[str]:
        result = await self.request(
            "getTransaction",
            [signature, {"encoding": "json", "commitment": self.commitment, "maxSupportedTransactionVersion": 0}],
        )
        meta = (result or {}).get("meta") or {}
        return list(meta.get("logMessages") or [])

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        signature = await self.request("requestAirdrop", [str(address), lamports])
        return str(signature)

    async def ensure_balance(self, address: Pubkey, lamports: int, timeout_seconds: float = 60.0) -> int:
        """Top up ``address`` by airdrop until it holds ``lamports``."""
        balance = await self.get_balance(address)
        if balance < lamports:
            signature = await self.request_airdrop(address, lamports - balance)
            await self.confirm_transaction(signature, timeout_seconds)
            balance = await self.get_balance(address)
        return balance
