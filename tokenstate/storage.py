"""Key layout and value encoding for the token chain state.

State keys:

* ``0x0 | owner | asset`` -> balance
* ``0x1 | asset`` -> metadata length | metadata | supply | owner | warp
* ``0x2 | txID`` -> in | in tick | out | out tick | remaining | owner
* ``0x3 | asset | destination`` -> loan amount
* ``0x4`` -> height
* ``0x5 | source chain | message`` -> incoming warp
* ``0x6 | txID`` -> outgoing warp

Metadata keys:

* ``0x0 | txID`` -> timestamp | success | units
"""

from __future__ import annotations

import struct
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import InvalidBalanceError

ID_LEN = 32
PUBLIC_KEY_LEN = 32
UINT64_MAX = (1 << 64) - 1
UINT16_MAX = (1 << 16) - 1

TX_PREFIX = 0x0

BALANCE_PREFIX = 0x0
ASSET_PREFIX = 0x1
ORDER_PREFIX = 0x2
LOAN_PREFIX = 0x3
HEIGHT_PREFIX = 0x4
INCOMING_WARP_PREFIX = 0x5
OUTGOING_WARP_PREFIX = 0x6

FAILURE_BYTE = 0x0
SUCCESS_BYTE = 0x1

_HEIGHT_KEY = bytes([HEIGHT_PREFIX])
_U64 = struct.Struct(">Q")
_U16 = struct.Struct(">H")
_TX_VALUE = struct.Struct(">QBQ")

ReadState = Callable[[Sequence[bytes]], Sequence[Optional[bytes]]]


class Database(Protocol):
    """A mutable key/value view of chain state."""

    def get_value(self, key: bytes) -> bytes | None: ...

    def insert(self, key: bytes, value: bytes) -> None: ...

    def remove(self, key: bytes) -> None: ...


class InMemoryDatabase:
    """A dictionary-backed state database."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}

    def get_value(self, key: bytes) -> bytes | None:
        """Return the value stored at ``key`` or ``None`` if absent."""
        return self._data.get(bytes(key))

    def insert(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def read_state(self, keys: Sequence[bytes]) -> list[bytes | None]:
        """Read several keys at once; missing keys yield ``None``."""
        return [self._data.get(bytes(k)) for k in keys]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetRecord:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderRecord:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _fixed(value: bytes, length: int, name: str) -> bytes:
    value = bytes(value)
    if len(value) != length:
        raise ValueError(f"{name} must be {length} bytes, got {len(value)}")
    return value


def _id(value: bytes, name: str = "id") -> bytes:
    return _fixed(value, ID_LEN, name)


def _pk(value: bytes, name: str = "public key") -> bytes:
    return _fixed(value, PUBLIC_KEY_LEN, name)


def _u64(value: int, name: str) -> bytes:
    if not 0 <= value <= UINT64_MAX:
        raise ValueError(f"{name} out of uint64 range: {value}")
    return _U64.pack(value)


def _decode_u64(value: bytes | None) -> int:
    if value is None:
        return 0
    return _U64.unpack_from(value, 0)[0]


# Transactions


def prefix_tx_key(tx_id: bytes) -> bytes:
    """Key of a transaction record: ``[txPrefix] + [txID]``."""
    return bytes([TX_PREFIX]) + _id(tx_id, "tx id")


def store_transaction(
    db: Database, tx_id: bytes, timestamp: int, success: bool, units: int
) -> None:
    if not -(1 << 63) <= timestamp < (1 << 63):
        raise ValueError(f"timestamp out of int64 range: {timestamp}")
    if not 0 <= units <= UINT64_MAX:
        raise ValueError(f"units out of uint64 range: {units}")
    value = _TX_VALUE.pack(
        timestamp & UINT64_MAX, SUCCESS_BYTE if success else FAILURE_BYTE, units
    )
    db.insert(prefix_tx_key(tx_id), value)


def get_transaction(db: Database, tx_id: bytes) -> TransactionRecord | None:
    """Return the stored transaction, or ``None`` if it is unknown."""
    value = db.get_value(prefix_tx_key(tx_id))
    if value is None:
        return None
    raw_time, flag, units = _TX_VALUE.unpack_from(value, 0)
    timestamp = raw_time - (1 << 64) if raw_time >= (1 << 63) else raw_time
    return TransactionRecord(timestamp, flag != FAILURE_BYTE, units)


# Balances


def prefix_balance_key(pk: bytes, asset: bytes) -> bytes:
    """Key of a balance: ``[balancePrefix] + [owner] + [asset]``."""
    return bytes([BALANCE_PREFIX]) + _pk(pk) + _id(asset, "asset")


def get_balance(db: Database, pk: bytes, asset: bytes) -> int:
    """Return the balance; a missing account has balance 0."""
    return _decode_u64(db.get_value(prefix_balance_key(pk, asset)))


def get_balance_from_state(read_state: ReadState, pk: bytes, asset: bytes) -> int:
    """Balance lookup through a batch reader, used to answer queries."""
    values = read_state([prefix_balance_key(pk, asset)])
    return _decode_u64(values[0])


def set_balance(db: Database, pk: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(pk, asset), _u64(balance, "balance"))


def delete_balance(db: Database, pk: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(pk, asset))


def add_balance(db: Database, pk: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(pk, asset)
    balance = _decode_u64(db.get_value(key))
    new_balance = balance + amount
    if amount < 0 or new_balance > UINT64_MAX:
        raise InvalidBalanceError(
            f"could not add balance (asset={asset.hex()}, bal={balance}, "
            f"addr={pk.hex()}, amount={amount})"
        )
    db.insert(key, _U64.pack(new_balance))


def sub_balance(db: Database, pk: bytes, asset: bytes, amount: int) -> None:
    """Subtract from a balance, deleting the record when it reaches zero."""
    key = prefix_balance_key(pk, asset)
    balance = _decode_u64(db.get_value(key))
    if amount < 0 or amount > balance:
        raise InvalidBalanceError(
            f"could not subtract balance (asset={asset.hex()}, bal={balance}, "
            f"addr={pk.hex()}, amount={amount})"
        )
    new_balance = balance - amount
    if new_balance == 0:
        db.remove(key)
    else:
        db.insert(key, _U64.pack(new_balance))


# Assets


def prefix_asset_key(asset: bytes) -> bytes:
    """Key of an asset: ``[assetPrefix] + [asset]``."""
    return bytes([ASSET_PREFIX]) + _id(asset, "asset")


def _decode_asset(value: bytes | None) -> AssetRecord | None:
    if value is None:
        return None
    (meta_len,) = _U16.unpack_from(value, 0)
    offset = _U16.size
    metadata = value[offset : offset + meta_len]
    offset += meta_len
    (supply,) = _U64.unpack_from(value, offset)
    offset += _U64.size
    owner = value[offset : offset + PUBLIC_KEY_LEN]
    offset += PUBLIC_KEY_LEN
    warp = value[offset] == 0x1
    return AssetRecord(bytes(metadata), supply, bytes(owner), warp)


def get_asset(db: Database, asset: bytes) -> AssetRecord | None:
    """Return the asset record, or ``None`` if it does not exist."""
    return _decode_asset(db.get_value(prefix_asset_key(asset)))


def get_asset_from_state(read_state: ReadState, asset: bytes) -> AssetRecord | None:
    """Asset lookup through a batch reader, used to answer queries."""
    values = read_state([prefix_asset_key(asset)])
    return _decode_asset(values[0])


def set_asset(
    db: Database,
    asset: bytes,
    metadata: bytes,
    supply: int,
    owner: bytes,
    warp: bool,
) -> None:
    metadata = bytes(metadata)
    if len(metadata) > UINT16_MAX:
        raise ValueError(f"metadata too long: {len(metadata)} bytes")
    value = b"".join(
        (
            _U16.pack(len(metadata)),
            metadata,
            _u64(supply, "supply"),
            _pk(owner, "owner"),
            b"\x01" if warp else b"\x00",
        )
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


# Orders


def prefix_order_key(tx_id: bytes) -> bytes:
    """Key of an order: ``[orderPrefix] + [txID]``."""
    return bytes([ORDER_PREFIX]) + _id(tx_id, "order id")


def set_order(
    db: Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = b"".join(
        (
            _id(in_asset, "in asset"),
            _u64(in_tick, "in tick"),
            _id(out_asset, "out asset"),
            _u64(out_tick, "out tick"),
            _u64(supply, "supply"),
            _pk(owner, "owner"),
        )
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: Database, order: bytes) -> OrderRecord | None:
    """Return the order record, or ``None`` if it does not exist."""
    value = db.get_value(prefix_order_key(order))
    if value is None:
        return None
    in_asset = value[:ID_LEN]
    (in_tick,) = _U64.unpack_from(value, ID_LEN)
    out_start = ID_LEN + _U64.size
    out_asset = value[out_start : out_start + ID_LEN]
    (out_tick,) = _U64.unpack_from(value, ID_LEN * 2 + _U64.size)
    (remaining,) = _U64.unpack_from(value, ID_LEN * 2 + _U64.size * 2)
    owner_start = ID_LEN * 2 + _U64.size * 3
    owner = value[owner_start : owner_start + PUBLIC_KEY_LEN]
    return OrderRecord(
        bytes(in_asset), in_tick, bytes(out_asset), out_tick, remaining, bytes(owner)
    )


def delete_order(db: Database, order: bytes) -> None:
    db.remove(prefix_order_key(order))


# Loans


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    """Key of a loan: ``[loanPrefix] + [asset] + [destination]``."""
    return bytes([LOAN_PREFIX]) + _id(asset, "asset") + _id(destination, "destination")


def get_loan(db: Database, asset: bytes, destination: bytes) -> int:
    """Return the outstanding loan; a missing record means 0."""
    return _decode_u64(db.get_value(prefix_loan_key(asset, destination)))


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    """Loan lookup through a batch reader, used to answer queries."""
    values = read_state([prefix_loan_key(asset, destination)])
    return _decode_u64(values[0])


def set_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _u64(amount, "loan"))


def add_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan + amount
    if amount < 0 or new_loan > UINT64_MAX:
        raise InvalidBalanceError(
            f"could not add loan (asset={asset.hex()}, "
            f"destination={destination.hex()}, amount={amount})"
        )
    set_loan(db, asset, destination, new_loan)


def sub_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    """Reduce a loan, deleting the record when it reaches zero."""
    loan = get_loan(db, asset, destination)
    if amount < 0 or amount > loan:
        raise InvalidBalanceError(
            f"could not subtract loan (asset={asset.hex()}, "
            f"destination={destination.hex()}, amount={amount})"
        )
    new_loan = loan - amount
    if new_loan == 0:
        db.remove(prefix_loan_key(asset, destination))
    else:
        set_loan(db, asset, destination, new_loan)


# Chain bookkeeping keys


def height_key() -> bytes:
    return _HEIGHT_KEY


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return (
        bytes([INCOMING_WARP_PREFIX])
        + _id(source_chain_id, "source chain id")
        + _id(msg_id, "message id")
    )


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([OUTGOING_WARP_PREFIX]) + _id(tx_id, "tx id")