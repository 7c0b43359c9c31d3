import json

import pytest

from tokenstate import storage
from tokenstate.client import AssetInfo, JSONRPCClient, RPCError
from tokenstate.server import SERVER_ERROR, JSONRPCServer
from tokenstate.storage import TransactionRecord

EMPTY = bytes(32)
SENDER = bytes(range(32))
OTHER = bytes([5]) * 32
ASSET1 = bytes([1]) * 32
TX = bytes([3]) * 32
DEST = bytes([9]) * 32
CHAIN = bytes([4]) * 32
BASE_URI = "http://localhost:9650/ext/bc/chain"


class StateController:
    def __init__(self):
        self.db = storage.InMemoryDatabase()
        self.genesis_calls = 0
        self.balance_hook = None
        self.tx_hook = None

    def genesis(self):
        self.genesis_calls += 1
        return {"minUnitPrice": 1}

    def get_transaction(self, tx_id):
        if self.tx_hook:
            self.tx_hook()
        return storage.get_transaction(self.db, tx_id)

    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(self.db.read_state, asset)

    def get_balance_from_state(self, pk, asset):
        if self.balance_hook:
            self.balance_hook()
        return storage.get_balance_from_state(self.db.read_state, pk, asset)

    def orders(self, pair, limit):
        return [{"id": TX.hex(), "remaining": 4}] if pair == "x-y" else []

    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(self.db.read_state, asset, destination)


class Loopback:
    def __init__(self, server):
        self.server = server
        self.urls = []
        self.requests = []

    def __call__(self, url, body):
        self.urls.append(url)
        self.requests.append(json.loads(body))
        return self.server.handle_json(body)


@pytest.fixture
def controller():
    return StateController()


@pytest.fixture
def transport(controller):
    return Loopback(JSONRPCServer(controller))


@pytest.fixture
def client(transport):
    return JSONRPCClient(
        BASE_URI + "/", CHAIN, transport=transport, poll_interval=0, wait_timeout=5
    )


def test_uri_gets_endpoint(transport):
    assert JSONRPCClient(BASE_URI + "/", CHAIN).uri == BASE_URI + "/tokenapi"
    assert JSONRPCClient(BASE_URI, CHAIN).uri == BASE_URI + "/tokenapi"
    assert JSONRPCClient(BASE_URI, CHAIN).chain_id == CHAIN


def test_request_shape(client, transport):
    client.balance(SENDER.hex(), ASSET1)
    request = transport.requests[0]
    assert transport.urls == [BASE_URI + "/tokenapi"]
    assert request["method"] == "tokenvm.balance"
    assert request["params"] == {"address": SENDER.hex(), "asset": ASSET1.hex()}


def test_genesis_is_cached(client, controller):
    assert client.genesis() == {"minUnitPrice": 1}
    assert client.genesis() == {"minUnitPrice": 1}
    assert controller.genesis_calls == 1


def test_native_balance(client, controller):
    storage.set_balance(controller.db, SENDER, EMPTY, 1_000_000_000_000)
    assert client.balance(SENDER.hex(), EMPTY) == 1_000_000_000_000
    assert client.balance(OTHER.hex(), EMPTY) == 0


def test_tx_found_and_missing(client, controller):
    assert client.tx(TX) is None
    storage.store_transaction(controller.db, TX, 99, True, 472)
    assert client.tx(TX) == TransactionRecord(99, True, 472)


def test_asset_info(client, controller):
    assert client.asset(ASSET1) is None
    storage.set_asset(controller.db, ASSET1, b"1", 15, SENDER, False)
    assert client.asset(ASSET1) == AssetInfo(b"1", 15, SENDER.hex(), False)


def test_loan(client, controller):
    assert client.loan(EMPTY, DEST) == 0
    storage.add_loan(controller.db, EMPTY, DEST, 5000)
    assert client.loan(EMPTY, DEST) == 5000


def test_orders(client):
    assert client.orders("x-y") == [{"id": TX.hex(), "remaining": 4}]
    assert client.orders("y-x") == []


def test_bad_address_is_rpc_error(client):
    with pytest.raises(RPCError) as info:
        client.balance("bogus", EMPTY)
    assert info.value.code == SERVER_ERROR
    assert "invalid address" in info.value.message


def test_other_errors_propagate_from_tx():
    def failing(url, body):
        return json.dumps(
            {"jsonrpc": "2.0", "error": {"code": -32000, "message": "boom"}, "id": 1}
        ).encode()

    client = JSONRPCClient(BASE_URI, CHAIN, transport=failing)
    with pytest.raises(RPCError, match="boom"):
        client.tx(TX)


def test_malformed_response():
    client = JSONRPCClient(BASE_URI, CHAIN, transport=lambda url, body: b"<html>")
    with pytest.raises(RPCError):
        client.balance(SENDER.hex(), EMPTY)


def test_wrong_id_length_rejected(client):
    with pytest.raises(ValueError):
        client.loan(b"short", DEST)


def test_wait_for_transaction_success(client, controller):
    queries = []

    def hook():
        queries.append(1)
        if len(queries) == 3:
            storage.store_transaction(controller.db, TX, 1, True, 472)

    controller.tx_hook = hook
    assert client.wait_for_transaction(TX) is True
    assert len(queries) == 3


def test_wait_for_transaction_failure(client, controller):
    storage.store_transaction(controller.db, TX, 1, False, 472)
    assert client.wait_for_transaction(TX) is False


def test_wait_for_balance(client, controller):
    queries = []

    def hook():
        queries.append(1)
        storage.add_balance(controller.db, OTHER, EMPTY, 10)

    controller.balance_hook = hook
    client.wait_for_balance(OTHER.hex(), EMPTY, 30)
    assert len(queries) == 3
    assert storage.get_balance(controller.db, OTHER, EMPTY) == 30


def test_wait_times_out(transport):
    client = JSONRPCClient(
        BASE_URI, CHAIN, transport=transport, poll_interval=0, wait_timeout=0
    )
    with pytest.raises(TimeoutError):
        client.wait_for_balance(OTHER.hex(), EMPTY, 1)