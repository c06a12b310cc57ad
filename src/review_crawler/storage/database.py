"""
SQLite database connection management.

Provides thread-safe database access with WAL mode
and one connection per thread.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from review_crawler.config import Settings
from review_crawler.core.exceptions import DatabaseError
from review_crawler.storage.schema import SchemaManager
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)

MEMORY_PATH = ":memory:"


class Database:
    """
    SQLite database manager.

    Provides thread-safe access to SQLite database with:
    - WAL mode for concurrent reads (file databases only)
    - Connection per thread
    - Automatic schema initialization

    A ":memory:" path gives a single shared connection, which is what
    the tests use.

    Example:
        >>> db = Database.from_settings(settings)
        >>> row = db.fetch_one("SELECT value FROM kv_store WHERE key = ?", ("active_session",))
    """

    def __init__(
        self,
        database_path: Path | str,
        wal_mode: bool = True,
        cache_size_mb: int = 16,
    ) -> None:
        """
        Initialize database manager.

        Args:
            database_path: Path to SQLite database file, or ":memory:"
            wal_mode: Enable WAL mode for better concurrency
            cache_size_mb: SQLite cache size in megabytes
        """
        self.in_memory = str(database_path) == MEMORY_PATH
        self.database_path = Path(database_path) if not self.in_memory else Path(MEMORY_PATH)
        self.wal_mode = wal_mode and not self.in_memory
        self.cache_size_mb = cache_size_mb

        self._connections: dict[int, sqlite3.Connection] = {}
        self._lock = threading.RLock()
        self._initialized = False

        logger.debug(f"Database manager created (path={database_path})")

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Create and set up a database from application settings."""
        storage = settings.storage
        db = cls(
            database_path=storage.database_path,
            wal_mode=storage.wal_mode,
            cache_size_mb=storage.cache_size_mb,
        )
        db.setup()
        return db

    @classmethod
    def in_memory_database(cls) -> "Database":
        """Create a set-up in-memory database."""
        db = cls(MEMORY_PATH)
        db.setup()
        return db

    def setup(self) -> None:
        """Create the parent directory and initialize the schema."""
        if self._initialized:
            return

        if not self.in_memory:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            SchemaManager(self._get_connection()).initialize()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Schema initialization failed: {e}",
                details={"path": str(self.database_path)},
            ) from e

        self._initialized = True
        logger.debug("Database setup complete")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get connection for current thread.

        In-memory databases share one connection across threads, since a
        second connection would see an empty database.
        """
        key = 0 if self.in_memory else threading.get_ident()

        if key not in self._connections:
            with self._lock:
                if key not in self._connections:
                    self._connections[key] = self._create_connection()

        return self._connections[key]

    def _create_connection(self) -> sqlite3.Connection:
        """Create and configure a new connection."""
        try:
            conn = sqlite3.connect(
                MEMORY_PATH if self.in_memory else str(self.database_path),
                check_same_thread=False,
                timeout=30.0,
            )
            conn.row_factory = sqlite3.Row

            cache_pages = (self.cache_size_mb * 1024 * 1024) // 4096
            conn.execute(f"PRAGMA cache_size = -{cache_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            logger.debug(
                f"Created new connection for thread {threading.get_ident()}")
            return conn

        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to create database connection: {e}",
                details={"path": str(self.database_path)},
            ) from e

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Execute operations in a transaction.

        Commits on success, rolls back on error.
        """
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN")
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise DatabaseError(f"Transaction failed: {e}") from e
            except Exception:
                conn.rollback()
                raise

    def execute(self, sql: str, params: tuple = (), commit: bool = False) -> sqlite3.Cursor:
        """
        Execute a single SQL statement.

        Args:
            sql: SQL statement
            params: Query parameters
            commit: Commit immediately after the statement

        Returns:
            Cursor with results
        """
        with self._lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(sql, params)
                if commit:
                    conn.commit()
                return cursor
            except sqlite3.Error as e:
                raise DatabaseError(
                    f"Query execution failed: {e}", query=sql) from e

    def executemany(self, sql: str, params_list: list[tuple]) -> int:
        """
        Execute a statement for several parameter sets in one transaction.

        Returns:
            Number of affected rows
        """
        with self.transaction() as conn:
            try:
                cursor = conn.executemany(sql, params_list)
            except sqlite3.Error as e:
                raise DatabaseError(
                    f"Batch execution failed: {e}", query=sql) from e
            return cursor.rowcount

    def fetch_one(self, sql: str, params: tuple = ()) -> dict | None:
        """Fetch a single row as a dictionary."""
        row = self.execute(sql, params).fetchone()
        return dict(row) if row else None

    def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        """Fetch all rows as dictionaries."""
        return [dict(row) for row in self.execute(sql, params).fetchall()]

    def close(self) -> None:
        """Close all connections."""
        with self._lock:
            for conn in self._connections.values():
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection: {e}")
            self._connections.clear()
            self._initialized = False

        logger.debug("All database connections closed")

    @property
    def size_bytes(self) -> int:
        """Database file size in bytes (0 for in-memory databases)."""
        if not self.in_memory and self.database_path.exists():
            return self.database_path.stat().st_size
        return 0

    def __repr__(self) -> str:
        status = "initialized" if self._initialized else "not initialized"
        return f"Database(path={str(self.database_path)!r}, {status})"
