"""JSON-RPC service answering queries about token chain state."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable, Mapping, Sequence
from functools import partial
from typing import Any, Protocol

from .errors import AssetNotFoundError, TxNotFoundError
from .storage import ID_LEN, PUBLIC_KEY_LEN, AssetRecord, TransactionRecord

JSONRPC_ENDPOINT = "/tokenapi"
SERVICE_NAME = "tokenvm"
ORDERS_TO_SEND = 128

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

_EMPTY_ID = bytes(ID_LEN)

Reply = dict[str, Any]


class Controller(Protocol):
    """What the server needs from the running chain."""

    def genesis(self) -> Mapping[str, Any]: ...

    def get_transaction(self, tx_id: bytes) -> TransactionRecord | None: ...

    def get_asset_from_state(self, asset: bytes) -> AssetRecord | None: ...

    def get_balance_from_state(self, pk: bytes, asset: bytes) -> int: ...

    def orders(self, pair: str, limit: int) -> Sequence[Mapping[str, Any]]: ...

    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int: ...


def _hex_address(pk: bytes) -> str:
    return bytes(pk).hex()


def _parse_hex_address(address: str) -> bytes:
    try:
        pk = bytes.fromhex(address)
    except (TypeError, ValueError):
        raise ValueError(f"invalid address: {address!r}") from None
    if len(pk) != PUBLIC_KEY_LEN:
        raise ValueError(f"invalid address: {address!r}")
    return pk


def _decode_id(params: Mapping[str, Any], name: str) -> bytes:
    value = params.get(name)
    if value is None:
        return _EMPTY_ID
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    raw = bytes.fromhex(value)
    if len(raw) != ID_LEN:
        raise ValueError(f"{name} must be {ID_LEN} bytes")
    return raw


def _decode_str(params: Mapping[str, Any], name: str) -> str:
    value = params.get(name, "")
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    return value


def _normalize_params(params: Any) -> Mapping[str, Any]:
    if params is None:
        return {}
    if isinstance(params, Mapping):
        return params
    if isinstance(params, list):
        if not params:
            return {}
        if len(params) == 1 and isinstance(params[0], Mapping):
            return params[0]
    raise TypeError("params must be an object")


def _response(request_id: Any, result: Any) -> Reply:
    return {"jsonrpc": "2.0", "result": result, "id": request_id}


def _error(request_id: Any, code: int, message: str) -> Reply:
    return {
        "jsonrpc": "2.0",
        "error": {"code": code, "message": message},
        "id": request_id,
    }


class JSONRPCServer:
    """Answers token queries through a :class:`Controller`.

    Addresses are hex-encoded public keys unless other codecs are given.
    """

    def __init__(
        self,
        controller: Controller,
        *,
        address_formatter: Callable[[bytes], str] = _hex_address,
        address_parser: Callable[[str], bytes] = _parse_hex_address,
    ) -> None:
        self._controller = controller
        self._format_address = address_formatter
        self._parse_address = address_parser
        self._routes: dict[str, Callable[[Mapping[str, Any]], Callable[[], Reply]]] = {
            "genesis": lambda p: self.genesis,
            "tx": lambda p: partial(self.tx, _decode_id(p, "txId")),
            "asset": lambda p: partial(self.asset, _decode_id(p, "asset")),
            "balance": lambda p: partial(
                self.balance, _decode_str(p, "address"), _decode_id(p, "asset")
            ),
            "orders": lambda p: partial(self.orders, _decode_str(p, "pair")),
            "loan": lambda p: partial(
                self.loan, _decode_id(p, "asset"), _decode_id(p, "destination")
            ),
        }

    def genesis(self) -> Reply:
        return {"genesis": self._controller.genesis()}

    def tx(self, tx_id: bytes) -> Reply:
        record = self._controller.get_transaction(tx_id)
        if record is None:
            raise TxNotFoundError()
        return {
            "timestamp": record.timestamp,
            "success": record.success,
            "units": record.units,
        }

    def asset(self, asset: bytes) -> Reply:
        record = self._controller.get_asset_from_state(asset)
        if record is None:
            raise AssetNotFoundError()
        return {
            "metadata": base64.b64encode(record.metadata).decode("ascii"),
            "supply": record.supply,
            "owner": self._format_address(record.owner),
            "warp": record.warp,
        }

    def balance(self, address: str, asset: bytes) -> Reply:
        pk = self._parse_address(address)
        return {"amount": self._controller.get_balance_from_state(pk, asset)}

    def orders(self, pair: str) -> Reply:
        return {"orders": list(self._controller.orders(pair, ORDERS_TO_SEND))}

    def loan(self, asset: bytes, destination: bytes) -> Reply:
        return {"amount": self._controller.get_loan_from_state(asset, destination)}

    def handle(self, request: Any) -> Reply:
        """Serve one decoded JSON-RPC request and return the response object."""
        if not isinstance(request, Mapping):
            return _error(None, INVALID_REQUEST, "invalid request")
        request_id = request.get("id")
        method = request.get("method")
        if not isinstance(method, str):
            return _error(request_id, INVALID_REQUEST, "invalid request")
        service, _, name = method.partition(".")
        route = self._routes.get(name) if service == SERVICE_NAME else None
        if route is None:
            return _error(request_id, METHOD_NOT_FOUND, f"method not found: {method}")
        try:
            call = route(_normalize_params(request.get("params")))
        except (TypeError, ValueError) as exc:
            return _error(request_id, INVALID_PARAMS, f"invalid params: {exc}")
        try:
            result = call()
        except Exception as exc:  # every failure is reported to the caller
            return _error(request_id, SERVER_ERROR, str(exc))
        return _response(request_id, result)

    def handle_json(self, body: str | bytes) -> bytes:
        """Serve a raw JSON-RPC request body and return the encoded response."""
        try:
            request = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            reply = _error(None, PARSE_ERROR, f"parse error: {exc}")
        else:
            reply = self.handle(request)
        return json.dumps(reply).encode("utf-8")