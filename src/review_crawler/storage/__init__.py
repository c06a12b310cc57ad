"""
Storage module for the review crawler.

Provides SQLite-based storage with:
- Connection management with WAL mode
- Schema initialization
- Key-value persistence for crawl state
- Record sinks for collected reviews
"""

from review_crawler.storage.database import Database
from review_crawler.storage.schema import SchemaManager, SCHEMA_VERSION
from review_crawler.storage.kv_store import (
    KeyValueStore,
    SQLiteKeyValueStore,
    MemoryKeyValueStore,
)

__all__ = [
    "Database",
    "SchemaManager",
    "SCHEMA_VERSION",
    "KeyValueStore",
    "SQLiteKeyValueStore",
    "MemoryKeyValueStore",
]
