"""
SQLite schema and its migrations.

Two tables carry everything:
- kv_store: JSON values keyed by string (sessions, queue, watermarks, quotas)
- reviews: collected records, unique per target and fingerprint

Each schema version is a list of statements. A database is brought up
to SCHEMA_VERSION by applying, in order, every version it has not seen.
"""

import sqlite3

from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)

MIGRATIONS: dict[int, tuple[str, ...]] = {
    1: (
        """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS reviews (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            target_id TEXT NOT NULL,
            source TEXT NOT NULL,
            fingerprint TEXT NOT NULL,
            title TEXT,
            body TEXT,
            author TEXT,
            date TEXT,
            rating REAL,
            review_id TEXT,
            url TEXT,
            page INTEGER,
            collected_at TEXT,
            extra TEXT,
            UNIQUE(target_id, fingerprint)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_reviews_target ON reviews(target_id)",
        "CREATE INDEX IF NOT EXISTS idx_reviews_date ON reviews(target_id, date)",
    ),
}

SCHEMA_VERSION = max(MIGRATIONS)


class SchemaManager:
    """
    Applies pending migrations to a connection.

    Example:
        >>> SchemaManager(connection).initialize()
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.conn = connection

    def initialize(self) -> None:
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "version INTEGER PRIMARY KEY, applied_at TEXT DEFAULT CURRENT_TIMESTAMP)"
        )

        current = self.get_version() or 0
        pending = [version for version in sorted(MIGRATIONS) if version > current]
        if not pending:
            logger.debug(f"Schema is at version {current}")
            return

        for version in pending:
            for statement in MIGRATIONS[version]:
                self.conn.execute(statement)
            self.conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            logger.info(f"Applied schema version {version}")
        self.conn.commit()

    def get_version(self) -> int | None:
        return self.conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
