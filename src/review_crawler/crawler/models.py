"""
Domain models for crawl sessions.

Defines the session state machine, queue entries, collected records
and page payloads passed between traversal strategies and the
controller.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from review_crawler.core.exceptions import SessionStateError


class SessionStatus(str, Enum):
    """Lifecycle status of a crawl session."""

    IDLE = "idle"
    REDIRECTING = "redirecting"
    COLLECTING = "collecting"
    PAGINATING = "paginating"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_live(self) -> bool:
        return not self.is_terminal


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.STOPPED, SessionStatus.FAILED}
)

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({
        SessionStatus.REDIRECTING,
        SessionStatus.COLLECTING,
        SessionStatus.STOPPED,
        SessionStatus.FAILED,
    }),
    SessionStatus.REDIRECTING: frozenset({
        SessionStatus.COLLECTING,
        SessionStatus.COMPLETED,
        SessionStatus.STOPPED,
        SessionStatus.FAILED,
    }),
    SessionStatus.COLLECTING: frozenset({
        SessionStatus.PAGINATING,
        SessionStatus.COMPLETED,
        SessionStatus.STOPPED,
        SessionStatus.FAILED,
    }),
    SessionStatus.PAGINATING: frozenset({
        SessionStatus.COLLECTING,
        SessionStatus.COMPLETED,
        SessionStatus.STOPPED,
        SessionStatus.FAILED,
    }),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.STOPPED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}


class TraversalMode(str, Enum):
    """How the next page is reached."""

    NAVIGATION = "navigation"  # new execution context per page
    FETCH = "fetch"  # direct retrieval inside the current process


class EndReason(str, Enum):
    """Why a session reached a terminal status."""

    NO_MORE_PAGES = "no_more_pages"
    WATERMARK_REACHED = "watermark_reached"
    EXTRACTION_EMPTY = "extraction_empty"
    ALL_DUPLICATES = "all_duplicates"
    STOP_REQUESTED = "stop_requested"
    SUPERSEDED = "superseded"
    QUOTA_EXHAUSTED = "quota_exhausted"
    CHALLENGE = "challenge"
    TRANSPORT = "transport"
    ERROR = "error"


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


@dataclass
class Review:
    """
    A single collected record.

    The extractor fills the content fields. Collection metadata
    (target_id, source, page, collected_at) is attached by the controller
    on a copy.
    """

    body: str = ""
    title: str = ""
    author: str = ""
    date: str | None = None
    rating: float | None = None
    review_id: str | None = None
    url: str | None = None
    target_id: str | None = None
    source: str | None = None
    page: int | None = None
    collected_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Review":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class QueueEntry:
    """A target waiting in the batch queue."""

    url: str
    title: str = ""
    source: str = "generic"
    added_at: str = field(default_factory=_now)
    queue_name: str | None = None
    incremental_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "source": self.source,
            "added_at": self.added_at,
            "queue_name": self.queue_name,
            "incremental_only": self.incremental_only,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueEntry":
        return cls(
            url=data["url"],
            title=data.get("title", ""),
            source=data.get("source", "generic"),
            added_at=data.get("added_at") or _now(),
            queue_name=data.get("queue_name"),
            incremental_only=bool(data.get("incremental_only", False)),
        )


@dataclass
class PageContent:
    """Raw page delivered by a transport."""

    url: str
    html: str
    status_code: int | None = 200
    page_number: int | None = None


@dataclass
class FetchedPage:
    """A page retrieved and parsed by a fetch strategy."""

    content: PageContent
    records: list[Review]
    has_next: bool


@dataclass
class CrawlSession:
    """
    Persisted state of one crawl job.

    Survives the destruction of the context that created it: the
    controller writes it to the key-value store after every change and
    a later context rebuilds it with from_dict().

    Invariants enforced here:
    - status only moves along ALLOWED_TRANSITIONS
    - current_page never decreases
    - seen_fingerprints only grows
    """

    target_id: str
    source: str
    mode: TraversalMode
    status: SessionStatus = SessionStatus.IDLE
    start_url: str = ""
    listing_url: str = ""
    current_page: int = 1
    listing_offset: int = 0
    total_pages: int | None = None
    expected_total: int | None = None
    collected_count: int = 0
    duplicates_dropped: int = 0
    stale_dropped: int = 0
    consecutive_skip_pages: int = 0
    incremental_only: bool = False
    watermark_date: str | None = None
    seen_fingerprints: list[str] = field(default_factory=list)
    last_processed_url: str | None = None
    last_processed_page: int = 0
    next_location: str | None = None
    stop_after_page: bool = False
    queue_name: str | None = None
    end_reason: EndReason | None = None
    failed_page: int | None = None
    error_message: str | None = None
    run_id: str = field(default_factory=lambda: uuid4().hex)
    started_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    completed_at: str | None = None

    def __post_init__(self) -> None:
        self._seen = set(self.seen_fingerprints)

    @property
    def is_live(self) -> bool:
        return self.status.is_live

    @property
    def listing_page(self) -> int:
        """Page number on the current listing URL; current_page counts pages across listings."""
        return self.current_page - self.listing_offset

    def transition(self, status: SessionStatus, reason: EndReason | None = None) -> None:
        """
        Move to a new status.

        Raises:
            SessionStateError: If the move is not allowed
        """
        if status == self.status:
            return
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise SessionStateError(
                f"Illegal transition {self.status.value} -> {status.value}",
                target_id=self.target_id,
            )
        self.status = status
        if reason is not None:
            self.end_reason = reason
        if status.is_terminal:
            self.completed_at = _now()
        self.touch()

    def advance_to(self, page: int) -> None:
        """Set current_page, refusing to move backwards."""
        if page < self.current_page:
            raise SessionStateError(
                f"Page counter cannot move back from {self.current_page} to {page}",
                target_id=self.target_id,
            )
        self.current_page = page

    def has_seen(self, fingerprint: str) -> bool:
        return fingerprint in self._seen

    def add_fingerprints(self, fingerprints: list[str]) -> int:
        """Record fingerprints; returns how many were new."""
        added = 0
        for fp in fingerprints:
            if fp not in self._seen:
                self._seen.add(fp)
                self.seen_fingerprints.append(fp)
                added += 1
        return added

    def touch(self) -> None:
        self.updated_at = _now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "source": self.source,
            "mode": self.mode.value,
            "status": self.status.value,
            "start_url": self.start_url,
            "listing_url": self.listing_url,
            "current_page": self.current_page,
            "listing_offset": self.listing_offset,
            "total_pages": self.total_pages,
            "expected_total": self.expected_total,
            "collected_count": self.collected_count,
            "duplicates_dropped": self.duplicates_dropped,
            "stale_dropped": self.stale_dropped,
            "consecutive_skip_pages": self.consecutive_skip_pages,
            "incremental_only": self.incremental_only,
            "watermark_date": self.watermark_date,
            "seen_fingerprints": list(self.seen_fingerprints),
            "last_processed_url": self.last_processed_url,
            "last_processed_page": self.last_processed_page,
            "next_location": self.next_location,
            "stop_after_page": self.stop_after_page,
            "queue_name": self.queue_name,
            "end_reason": self.end_reason.value if self.end_reason else None,
            "failed_page": self.failed_page,
            "error_message": self.error_message,
            "run_id": self.run_id,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CrawlSession":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["mode"] = TraversalMode(values["mode"])
        values["status"] = SessionStatus(values.get("status", "idle"))
        if values.get("end_reason"):
            values["end_reason"] = EndReason(values["end_reason"])
        values["seen_fingerprints"] = list(values.get("seen_fingerprints") or [])
        # sessions saved before run tokens existed keep a stable one
        values.setdefault("run_id", values.get("started_at") or "")
        return cls(**values)

    def snapshot(self) -> dict[str, Any]:
        """Compact view for progress events and status output."""
        return {
            "target_id": self.target_id,
            "source": self.source,
            "mode": self.mode.value,
            "status": self.status.value,
            "current_page": self.current_page,
            "total_pages": self.total_pages,
            "collected_count": self.collected_count,
            "duplicates_dropped": self.duplicates_dropped,
            "stale_dropped": self.stale_dropped,
            "incremental_only": self.incremental_only,
            "watermark_date": self.watermark_date,
            "end_reason": self.end_reason.value if self.end_reason else None,
            "failed_page": self.failed_page,
            "error_message": self.error_message,
            "queue_name": self.queue_name,
        }
