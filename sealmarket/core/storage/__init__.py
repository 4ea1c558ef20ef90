"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Ledger records (markets, accounts, claim receipts)
- Market metadata (encryption keys, ledger addressing)
- Settlement counters
"""

from sealmarket.core.storage.sqlite_adapter import SQLiteAdapter
from sealmarket.core.storage.storage_manager import StorageManager
from sealmarket.core.storage.meta_store import MetaStore

__all__ = ["SQLiteAdapter", "StorageManager", "MetaStore"]
