# tokenstate

`tokenstate` describes how a token ledger stores its state in a key-value
database. It also provides a JSON-RPC service that answers queries about that
state, and a client that calls the service. It uses only the standard library.

## Modules

- `tokenstate.storage` defines the key prefixes and value encodings. All
  integers are big-endian.
  - Key layout: transactions, balances, assets, orders and loans, plus the
    height key (`height_key`) and the warp message keys
    (`incoming_warp_key_prefix`, `outgoing_warp_key_prefix`).
  - Argument sizes: identifiers and public keys must be exactly 32 bytes.
    Other lengths raise `ValueError`.
  - Record types: the readers return `TransactionRecord`, `AssetRecord` or
    `OrderRecord`, or `None` when the record is missing.
  - `InMemoryDatabase` is a dictionary-backed store. It provides
    `get_value`, `insert`, `remove` and `read_state`.
- `tokenstate.errors` defines `TokenStateError` and its subclasses:
  - `InvalidBalanceError` is also a `ValueError`.
  - `TxNotFoundError` and `AssetNotFoundError` are also `LookupError`s.
- `tokenstate.server` defines `JSONRPCServer`. It answers queries through any
  object that implements the `Controller` protocol.
- `tokenstate.client` defines:
  - `JSONRPCClient`, which calls the service;
  - `AssetInfo`, which describes an asset;
  - `RPCError`, which is raised for errors the service reports and for
    malformed replies.

## Installing

```
pip install .
```

To install pytest for the tests as well:

```
pip install ".[test]"
```

## Balances and loans

```python
from tokenstate.storage import (
    InMemoryDatabase, set_balance, add_balance, sub_balance, get_balance,
)
from tokenstate.errors import InvalidBalanceError

db = InMemoryDatabase()
owner = bytes(32)    # public key
asset = bytes(32)    # asset id

set_balance(db, owner, asset, 100)
add_balance(db, owner, asset, 50)
sub_balance(db, owner, asset, 150)       # reaching zero removes the record
assert get_balance(db, owner, asset) == 0

try:
    sub_balance(db, owner, asset, 1)
except InvalidBalanceError as exc:
    print(exc)    # "invalid balance: could not subtract balance (...)"
```

How the functions behave:

- A missing balance or loan reads as 0.
- `add_balance` and `add_loan` raise `InvalidBalanceError` when the result
  would exceed 2**64 - 1.
- `sub_balance` and `sub_loan` raise `InvalidBalanceError` when the amount is
  larger than what is stored.
- A balance or loan that reaches zero is deleted, not stored as zero.

The other record types follow the same pattern:

- assets: `set_asset`, `get_asset`, `delete_asset`
- orders: `set_order`, `get_order`, `delete_order`
- transactions: `store_transaction`, `get_transaction`
- loans: `set_loan`, `get_loan`, `add_loan`, `sub_loan`

The `*_from_state` functions read through a batch reader, such as
`InMemoryDatabase.read_state`. A batch reader takes a list of keys and returns
a list of values, with `None` for each missing key.

## Serving queries

`JSONRPCServer` takes a controller that implements these methods:

- `genesis()`
- `get_transaction(tx_id)`
- `get_asset_from_state(asset)`
- `get_balance_from_state(pk, asset)`
- `orders(pair, limit)`
- `get_loan_from_state(asset, destination)`

The service answers these methods:

| Method | Params | Result |
| --- | --- | --- |
| `tokenvm.genesis` | none | `{"genesis": ...}` |
| `tokenvm.tx` | `txId` | `timestamp`, `success`, `units` |
| `tokenvm.asset` | `asset` | base64 `metadata`, `supply`, `owner`, `warp` |
| `tokenvm.balance` | `address`, `asset` | `amount` |
| `tokenvm.orders` | `pair` | `orders`, at most 128 |
| `tokenvm.loan` | `asset`, `destination` | `amount` |

Identifiers are sent as hex strings, and a missing identifier means 32 zero
bytes.

Addresses are hex-encoded public keys by default. To use other address
strings, pass `address_formatter` and `address_parser` to `JSONRPCServer`.

Two entry points serve requests:

- `handle(request)` takes a decoded request object and returns the response
  object.
- `handle_json(body)` takes raw JSON and returns encoded JSON bytes.

Failures are returned as JSON-RPC error objects. For example, an unknown
transaction gives the message `tx not found`, and an unknown asset gives
`asset not found`.

## Querying

`JSONRPCClient(uri, chain_id)` appends `/tokenapi` to `uri` and POSTs requests
with `urllib`. You can pass your own `transport(url, body) -> bytes` instead,
for example to talk to a server in the same process:

```python
from tokenstate.client import JSONRPCClient

client = JSONRPCClient(
    "http://localhost:9650/ext/bc/chain",
    bytes(32),
    transport=lambda url, body: server.handle_json(body),
)
print(client.balance("00" * 32, bytes(32)))
```

What the client methods do:

- `genesis()` fetches the genesis once and then returns the cached value.
- `tx(tx_id)` returns a `TransactionRecord`, or `None` if the transaction is
  unknown.
- `asset(asset)` returns an `AssetInfo`, or `None` if the asset does not
  exist.
- `balance`, `orders` and `loan` return the values from the reply.
- `wait_for_balance(address, asset, minimum)` polls until the balance reaches
  `minimum`.
- `wait_for_transaction(tx_id)` polls until the transaction is known, then
  returns whether it succeeded.

Both wait methods poll every `poll_interval` seconds. If `wait_timeout` is
set, they raise `TimeoutError` once it has passed.

## What this package does not do

`tokenstate` only lays out and queries state. It does not:

- build, sign or submit transactions;
- produce or verify blocks;
- keep an order book;
- run an HTTP server;
- provide a command-line tool.

To serve over HTTP, pass request bodies from a web framework of your choice to
`JSONRPCServer.handle_json`.

## Tests

```
pytest
```