"""
Persistence of crawl sessions, the active-session pointer and
per-target watermarks on top of a KeyValueStore.

Key layout:
    session:<target_id>     CrawlSession.to_dict()
    active_session          {"target_id": ...}
    watermark:<target_id>   {"date": "YYYY-MM-DD"}
"""

from review_crawler.core.exceptions import StorageError
from review_crawler.crawler.models import CrawlSession
from review_crawler.storage.kv_store import KeyValueStore
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)

SESSION_PREFIX = "session:"
WATERMARK_PREFIX = "watermark:"
ACTIVE_KEY = "active_session"


class SessionStore:
    """
    Typed access to session state.

    Example:
        >>> sessions = SessionStore(kv)
        >>> sessions.save(session)
        >>> sessions.active()
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def load(self, target_id: str) -> CrawlSession | None:
        data = self.kv.get(f"{SESSION_PREFIX}{target_id}")
        if data is None:
            return None
        try:
            return CrawlSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(
                f"Stored session is unreadable: {e}", {"target_id": target_id}
            ) from e

    def save(self, session: CrawlSession) -> None:
        session.touch()
        self.kv.set(f"{SESSION_PREFIX}{session.target_id}", session.to_dict())

    def delete(self, target_id: str) -> None:
        self.kv.delete(f"{SESSION_PREFIX}{target_id}")
        if self.active_target() == target_id:
            self.clear_active()

    def all(self) -> list[CrawlSession]:
        sessions = []
        for key in self.kv.keys(SESSION_PREFIX):
            session = self.load(key[len(SESSION_PREFIX):])
            if session is not None:
                sessions.append(session)
        return sessions

    def active_target(self) -> str | None:
        pointer = self.kv.get(ACTIVE_KEY)
        return pointer.get("target_id") if pointer else None

    def active(self) -> CrawlSession | None:
        """The session the active pointer names, if any."""
        target_id = self.active_target()
        return self.load(target_id) if target_id else None

    def set_active(self, target_id: str) -> None:
        self.kv.set(ACTIVE_KEY, {"target_id": target_id})

    def clear_active(self, target_id: str | None = None) -> None:
        """Clear the pointer; with target_id, only if it points there."""
        if target_id is None or self.active_target() == target_id:
            self.kv.delete(ACTIVE_KEY)

    def get_watermark(self, target_id: str) -> str | None:
        data = self.kv.get(f"{WATERMARK_PREFIX}{target_id}")
        return data.get("date") if data else None

    def set_watermark(self, target_id: str, day: str) -> None:
        self.kv.set(f"{WATERMARK_PREFIX}{target_id}", {"date": day})
        logger.debug(f"Watermark for {target_id} set to {day}")
