"""
Browser module for navigation-mode sessions.

Provides Playwright-based browser automation.
"""

from review_crawler.browser.manager import BrowserManager, BrowserPageLoader, create_browser
from review_crawler.browser.page_context import PageContext

__all__ = [
    "BrowserManager",
    "BrowserPageLoader",
    "create_browser",
    "PageContext",
]
