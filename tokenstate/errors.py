"""Exceptions raised by the token state store and its RPC layer."""

from __future__ import annotations


class TokenStateError(Exception):
    """Base class for all token state errors."""

    message = "token state error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail
        text = f"{self.message}: {detail}" if detail else self.message
        super().__init__(text)


class InvalidBalanceError(TokenStateError, ValueError):
    """A balance or loan update would overflow or underflow."""

    message = "invalid balance"


class TxNotFoundError(TokenStateError, LookupError):
    """The requested transaction is not stored."""

    message = "tx not found"


class AssetNotFoundError(TokenStateError, LookupError):
    """The requested asset is not stored."""

    message = "asset not found"