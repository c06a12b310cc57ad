"""
Crawl orchestration for review listings.

Provides:
- Session models and the session state machine
- Site profiles for Amazon, Rakuten and generic listings
- Traversal strategies, rate limiting and the batch queue

The controller, runners and queue manager are imported from
review_crawler.crawler.controller, .runner and .queue.
"""

from review_crawler.crawler.models import (
    CrawlSession,
    EndReason,
    FetchedPage,
    PageContent,
    QueueEntry,
    Review,
    SessionStatus,
    TraversalMode,
)
from review_crawler.crawler.sources import (
    SourceProfile,
    AmazonProfile,
    RakutenProfile,
    detect_source,
    get_profile,
)

__all__ = [
    # Models
    "CrawlSession",
    "EndReason",
    "FetchedPage",
    "PageContent",
    "QueueEntry",
    "Review",
    "SessionStatus",
    "TraversalMode",
    # Sources
    "SourceProfile",
    "AmazonProfile",
    "RakutenProfile",
    "detect_source",
    "get_profile",
]
