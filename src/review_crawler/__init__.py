"""
Review Crawler - resumable collection of product reviews.

This package drives paginated review listings on Amazon, Rakuten and
similar sites one page at a time, deduplicates and filters what it
collects, and persists its progress so a crawl survives the context
that started it.
"""

from review_crawler.config import Settings, load_config
from review_crawler.utils.logging import setup_logging, get_logger
from review_crawler.core.exceptions import ReviewCrawlerError

__version__ = "0.1.0"
__author__ = "Review Crawler Team"

__all__ = [
    "Settings",
    "load_config",
    "setup_logging",
    "get_logger",
    "ReviewCrawlerError",
]
