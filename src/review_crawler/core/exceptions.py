"""
Custom exceptions for the review crawler.

Exception Hierarchy:
    ReviewCrawlerError (base)
    ├── ConfigurationError
    ├── BrowserError
    ├── CrawlerError
    │   ├── SessionStateError
    │   ├── ExtractionEmpty
    │   ├── ChallengeDetected
    │   ├── TransportError (also RetryableError)
    │   ├── StaleResume
    │   ├── DuplicateEnqueue
    │   └── QuotaExceeded
    ├── StorageError
    │   └── DatabaseError
    └── SinkError

Only ConfigurationError and StorageError are expected to escape the
public crawl operations. Every CrawlerError is turned into a session
status or a result value by the controller and the queue manager.
"""

from typing import Any


class ReviewCrawlerError(Exception):
    """
    Base exception for all review crawler errors.

    Keyword context given to the constructor is merged into details,
    skipping values that are None.

    Attributes:
        message: Human-readable error description
        details: Context for logs and for the stored session error
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None, **context: Any) -> None:
        self.message = message
        self.details = dict(details or {})
        self.details.update({key: value for key, value in context.items() if value is not None})
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({context})"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, details={self.details!r})"


class RetryableError(ReviewCrawlerError):
    """
    Marker for errors that may go away if the same request is made later.

    Attributes:
        retry_after: Delay in seconds suggested by the remote side, if any
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        retry_after: float | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, details, **context)
        self.retry_after = retry_after


class ConfigurationError(ReviewCrawlerError):
    """Configuration file missing or malformed, or a value failed validation."""


class BrowserError(ReviewCrawlerError):
    """Playwright could not be started or driven."""


# Crawl session errors


class CrawlerError(ReviewCrawlerError):
    """Base error for crawl session operations."""


class SessionStateError(CrawlerError):
    """
    Illegal change to a crawl session.

    Raised when a status transition is not in the allowed table or the
    page counter would move backwards.
    """

    def __init__(self, message: str, target_id: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details, target_id=target_id)
        self.target_id = target_id


class ExtractionEmpty(CrawlerError):
    """
    The extractor returned zero records for a listing page.

    Not fatal: the session ends as completed with a warning.
    """

    def __init__(self, message: str, url: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details, url=url)
        self.url = url


class ChallengeDetected(CrawlerError):
    """
    The site answered with a verification page instead of reviews.

    Fatal for the session; the challenge has to be solved in a regular
    browser before starting again.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        marker: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details, url=url, marker=marker)
        self.url = url
        self.marker = marker


class TransportError(CrawlerError, RetryableError):
    """
    A page could not be retrieved: timeout, connection failure or an
    HTTP error status.

    The controller does not retry. The session fails with the page
    number recorded and can be started again later.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, details, retry_after, url=url, status_code=status_code)
        self.url = url
        self.status_code = status_code


class StaleResume(CrawlerError):
    """The requested page is not ahead of the last processed one."""

    def __init__(
        self,
        message: str,
        page: int | None = None,
        last_page: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details, page=page, last_page=last_page)
        self.page = page
        self.last_page = last_page


class DuplicateEnqueue(CrawlerError):
    def __init__(self, message: str, url: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details, url=url)
        self.url = url


class QuotaExceeded(CrawlerError):
    """The daily page budget for a source is used up."""

    def __init__(self, message: str, source: str, limit: int, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details, source=source, limit=limit)
        self.source = source
        self.limit = limit


# Storage errors


class StorageError(ReviewCrawlerError):
    """Base error for storage operations."""


class DatabaseError(StorageError):
    """A SQLite statement, connection or migration failed."""

    def __init__(self, message: str, query: str | None = None, details: dict[str, Any] | None = None) -> None:
        shown = query[:200] + "..." if query and len(query) > 200 else query
        super().__init__(message, details, query=shown)
        self.query = query


class SinkError(ReviewCrawlerError):
    """
    The record sink rejected a batch.

    Logged by the controller; the session carries on because the
    fingerprints of the batch were persisted before emission.
    """

    def __init__(self, message: str, record_count: int | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details, record_count=record_count)
        self.record_count = record_count


def is_retryable(error: Exception) -> bool:
    return isinstance(error, RetryableError)


def get_retry_delay(error: Exception, default: float = 5.0) -> float:
    """Seconds to wait before the same request is worth making again."""
    if isinstance(error, RetryableError) and error.retry_after is not None:
        return error.retry_after
    return default
