"""
Configuration module for the review crawler.

Provides Pydantic-based settings management with YAML file support
and environment variable overrides.
"""

from review_crawler.config.settings import (
    Settings,
    BrowserSettings,
    HttpSettings,
    CrawlerSettings,
    SourceSettings,
    MicroBreakTier,
    StorageSettings,
    LoggingSettings,
)
from review_crawler.config.loader import load_config, get_settings, reset_settings

__all__ = [
    "Settings",
    "BrowserSettings",
    "HttpSettings",
    "CrawlerSettings",
    "SourceSettings",
    "MicroBreakTier",
    "StorageSettings",
    "LoggingSettings",
    "load_config",
    "get_settings",
    "reset_settings",
]
