"""Persistent store adapter.

This module provides the versioned SQLite store the cache is built on,
with transactional per-table access.
"""

from scoutcache.storage.backend import (
    READONLY,
    READWRITE,
    SQLiteStore,
    StoreState,
    TableHandle,
    Transaction,
)

__all__ = [
    "SQLiteStore",
    "StoreState",
    "Transaction",
    "TableHandle",
    "READONLY",
    "READWRITE",
]
