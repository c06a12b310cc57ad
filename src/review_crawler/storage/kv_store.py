"""
Key-value persistence for crawl state.

Sessions, the batch queue, watermarks and quota counters are stored as
JSON values under string keys. Every write is a single statement, so
each key is updated atomically.
"""

import copy
import json
import threading
from typing import Any, Protocol, runtime_checkable

from review_crawler.core.exceptions import StorageError
from review_crawler.storage.database import Database
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal store contract used by the controller and the queue."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class SQLiteKeyValueStore:
    """
    Key-value store backed by the kv_store table.

    Example:
        >>> store = SQLiteKeyValueStore(db)
        >>> store.set("watermark:B0ABC12345", {"date": "2024-06-01"})
        >>> store.get("watermark:B0ABC12345")
        {'date': '2024-06-01'}
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, key: str) -> Any | None:
        row = self.db.fetch_one("SELECT value FROM kv_store WHERE key = ?", (key,))
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            raise StorageError(
                f"Corrupt value in key-value store: {e}", {"key": key}
            ) from e

    def set(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Value is not JSON serializable: {e}", {"key": key}
            ) from e

        self.db.execute(
            """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, payload),
            commit=True,
        )

    def delete(self, key: str) -> None:
        self.db.execute("DELETE FROM kv_store WHERE key = ?", (key,), commit=True)

    def keys(self, prefix: str = "") -> list[str]:
        rows = self.db.fetch_all(
            "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (_escape_like(prefix) + "%",),
        )
        return [row["key"] for row in rows]


class MemoryKeyValueStore:
    """
    In-process store. Values are deep-copied in both directions so that
    callers cannot mutate stored state by accident.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
