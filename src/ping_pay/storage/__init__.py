"""PingPay storage layer -- async SQLite database, ledger store, and Pydantic models."""

from ping_pay.storage.database import Database, get_database
from ping_pay.storage.ledger import LedgerStore
from ping_pay.storage.models import (
    ChannelRecord,
    TransferRecord,
    TransferStatus,
    WalletRecord,
    normalize_handle,
)

__all__ = [
    "Database",
    "get_database",
    "LedgerStore",
    "ChannelRecord",
    "TransferRecord",
    "TransferStatus",
    "WalletRecord",
    "normalize_handle",
]
