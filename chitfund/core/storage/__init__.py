"""
Persistent Storage Module.

Repository interfaces plus two implementations:
- InMemoryStorage (tests, demo)
- StorageManager over SQLite (groups, auctions, ledger entries, rankings)
"""

from chitfund.core.storage.base import (
    AuctionRepository,
    GroupRepository,
    LedgerRepository,
    RankingRepository,
    Storage,
)
from chitfund.core.storage.memory import InMemoryStorage
from chitfund.core.storage.sqlite_adapter import SQLiteAdapter
from chitfund.core.storage.storage_manager import StorageManager

__all__ = [
    "AuctionRepository",
    "GroupRepository",
    "LedgerRepository",
    "RankingRepository",
    "Storage",
    "InMemoryStorage",
    "SQLiteAdapter",
    "StorageManager",
]
