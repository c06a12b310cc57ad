"""
Core module for the review crawler.

Contains the exception hierarchy used throughout the application.
"""

from review_crawler.core.exceptions import (
    ReviewCrawlerError,
    RetryableError,
    ConfigurationError,
    BrowserError,
    CrawlerError,
    SessionStateError,
    ExtractionEmpty,
    ChallengeDetected,
    TransportError,
    StaleResume,
    DuplicateEnqueue,
    QuotaExceeded,
    StorageError,
    DatabaseError,
    SinkError,
    is_retryable,
    get_retry_delay,
)

__all__ = [
    # Base
    "ReviewCrawlerError",
    "RetryableError",
    "ConfigurationError",
    # Browser
    "BrowserError",
    # Crawler
    "CrawlerError",
    "SessionStateError",
    "ExtractionEmpty",
    "ChallengeDetected",
    "TransportError",
    "StaleResume",
    "DuplicateEnqueue",
    "QuotaExceeded",
    # Storage
    "StorageError",
    "DatabaseError",
    "SinkError",
    # Helpers
    "is_retryable",
    "get_retry_delay",
]
