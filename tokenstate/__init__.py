"""Token ledger state layout, with a JSON-RPC query server and client."""

__version__ = "0.0.1"

__all__ = ["errors", "storage", "server", "client"]