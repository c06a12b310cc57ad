"""
Utilities module for the review crawler.

Provides logging setup and in-memory metrics.
"""

from review_crawler.utils.logging import (
    setup_logging,
    get_logger,
    get_logger_with_context,
    reset_logging,
)
from review_crawler.utils.metrics import (
    Metrics,
    TimingStats,
    record_page,
    time_page_fetch,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "get_logger_with_context",
    "reset_logging",
    # Metrics
    "Metrics",
    "TimingStats",
    "record_page",
    "time_page_fetch",
]
