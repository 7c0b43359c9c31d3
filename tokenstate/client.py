"""Client for the token JSON-RPC service."""

from __future__ import annotations

import base64
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any

from .errors import AssetNotFoundError, TxNotFoundError
from .server import JSONRPC_ENDPOINT, PARSE_ERROR, SERVER_ERROR, SERVICE_NAME
from .storage import ID_LEN, TransactionRecord

VERSION = (0, 0, 1)

Transport = Callable[[str, bytes], bytes]

_log = logging.getLogger(__name__)


class RPCError(Exception):
    """An error reported by the remote service or a malformed reply."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class AssetInfo:
    metadata: bytes
    supply: int
    owner: str
    warp: bool


def _http_post(url: str, body: bytes, timeout: float | None = None) -> bytes:
    request = urllib.request.Request(
        url,
        data=body,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.read()
    except urllib.error.HTTPError as exc:
        payload = exc.read()
        if payload:
            return payload
        raise RPCError(exc.code, str(exc)) from exc


def _encode_id(value: bytes, name: str) -> str:
    raw = bytes(value)
    if len(raw) != ID_LEN:
        raise ValueError(f"{name} must be {ID_LEN} bytes, got {len(raw)}")
    return raw.hex()


class JSONRPCClient:
    """Queries a token service reachable at ``uri``."""

    def __init__(
        self,
        uri: str,
        chain_id: bytes,
        *,
        transport: Transport | None = None,
        timeout: float | None = None,
        poll_interval: float = 1.0,
        wait_timeout: float | None = None,
    ) -> None:
        self.uri = uri.removesuffix("/") + JSONRPC_ENDPOINT
        self.chain_id = bytes(chain_id)
        self._transport = transport or partial(_http_post, timeout=timeout)
        self._poll_interval = poll_interval
        self._wait_timeout = wait_timeout
        self._genesis: Any = None
        self._request_ids = itertools.count(1)

    def _call(self, method: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        body = json.dumps(
            {
                "jsonrpc": "2.0",
                "method": f"{SERVICE_NAME}.{method}",
                "params": dict(params),
                "id": next(self._request_ids),
            }
        ).encode("utf-8")
        raw = self._transport(self.uri, body)
        try:
            response = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as exc:
            raise RPCError(PARSE_ERROR, f"malformed response: {exc}") from exc
        if not isinstance(response, Mapping):
            raise RPCError(PARSE_ERROR, "malformed response")
        error = response.get("error")
        if error is not None:
            if isinstance(error, Mapping):
                raise RPCError(
                    int(error.get("code", SERVER_ERROR)), str(error.get("message", ""))
                )
            raise RPCError(SERVER_ERROR, str(error))
        result = response.get("result")
        return result if isinstance(result, Mapping) else {}

    def genesis(self) -> Any:
        """Return the chain genesis, fetching it once."""
        if self._genesis is None:
            self._genesis = self._call("genesis", {}).get("genesis")
        return self._genesis

    def tx(self, tx_id: bytes) -> TransactionRecord | None:
        """Return the transaction's outcome, or ``None`` if it is unknown."""
        try:
            reply = self._call("tx", {"txId": _encode_id(tx_id, "tx id")})
        except RPCError as exc:
            if TxNotFoundError.message in exc.message:
                return None
            raise
        return TransactionRecord(
            int(reply.get("timestamp", 0)),
            bool(reply.get("success", False)),
            int(reply.get("units", 0)),
        )

    def asset(self, asset: bytes) -> AssetInfo | None:
        """Return the asset description, or ``None`` if it does not exist."""
        try:
            reply = self._call("asset", {"asset": _encode_id(asset, "asset")})
        except RPCError as exc:
            if AssetNotFoundError.message in exc.message:
                return None
            raise
        metadata = reply.get("metadata") or ""
        return AssetInfo(
            base64.b64decode(metadata),
            int(reply.get("supply", 0)),
            str(reply.get("owner", "")),
            bool(reply.get("warp", False)),
        )

    def balance(self, address: str, asset: bytes) -> int:
        reply = self._call(
            "balance", {"address": address, "asset": _encode_id(asset, "asset")}
        )
        return int(reply.get("amount", 0))

    def orders(self, pair: str) -> list[Any]:
        return list(self._call("orders", {"pair": pair}).get("orders") or [])

    def loan(self, asset: bytes, destination: bytes) -> int:
        reply = self._call(
            "loan",
            {
                "asset": _encode_id(asset, "asset"),
                "destination": _encode_id(destination, "destination"),
            },
        )
        return int(reply.get("amount", 0))

    def _wait(self, done: Callable[[], bool]) -> None:
        deadline = (
            None if self._wait_timeout is None else time.monotonic() + self._wait_timeout
        )
        while not done():
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError("condition not met before the wait timed out")
            time.sleep(self._poll_interval)

    def wait_for_balance(self, address: str, asset: bytes, minimum: int) -> None:
        """Block until ``address`` holds at least ``minimum`` of ``asset``."""

        def reached() -> bool:
            if self.balance(address, asset) >= minimum:
                return True
            _log.info("waiting for %d balance: %s", minimum, address)
            return False

        self._wait(reached)

    def wait_for_transaction(self, tx_id: bytes) -> bool:
        """Block until the transaction is known and return whether it succeeded."""
        found: list[TransactionRecord] = []

        def known() -> bool:
            record = self.tx(tx_id)
            if record is not None:
                found.append(record)
            return record is not None

        self._wait(known)
        return found[0].success