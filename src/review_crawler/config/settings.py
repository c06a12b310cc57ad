"""
Pydantic settings models for the review crawler.

All configuration is defined here with defaults that keep request rates
close to what a person paging through reviews would produce.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class BrowserSettings(BaseModel):
    """Playwright browser configuration (navigation mode)."""

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode",
    )
    timeout_ms: int = Field(
        default=30000,
        ge=5000,
        le=120000,
        description="Default timeout for page operations in milliseconds",
    )
    navigation_timeout_ms: int = Field(
        default=60000,
        ge=10000,
        le=180000,
        description="Timeout for page navigation in milliseconds",
    )
    user_agent: str | None = Field(
        default=None,
        description="Custom user agent string. None uses browser default.",
    )
    viewport_width: int = Field(
        default=1280,
        ge=320,
        le=3840,
        description="Browser viewport width in pixels",
    )
    viewport_height: int = Field(
        default=720,
        ge=240,
        le=2160,
        description="Browser viewport height in pixels",
    )
    locale: str = Field(
        default="ja-JP",
        description="Browser locale; review listings render dates in this locale",
    )
    browser_type: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use",
    )


class HttpSettings(BaseModel):
    """httpx client configuration (fetch mode)."""

    timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Total timeout for a single page request",
    )
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
        ),
        description="User agent sent with direct page requests",
    )
    accept_language: str = Field(
        default="ja,en-US;q=0.8,en;q=0.6",
        description="Accept-Language header for direct page requests",
    )
    follow_redirects: bool = Field(
        default=True,
        description="Whether to follow HTTP redirects",
    )
    extra_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Additional headers sent with every request",
    )


class MicroBreakTier(BaseModel):
    """One band of the occasional longer pause between pages."""

    weight: float = Field(ge=0.0, description="Relative chance of picking this tier")
    min_seconds: float = Field(ge=0.0)
    max_seconds: float = Field(ge=0.0)

    @model_validator(mode="after")
    def check_bounds(self) -> "MicroBreakTier":
        """Reject inverted ranges."""
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")
        return self


class SourceSettings(BaseModel):
    """Per-site crawl knobs."""

    mode: Literal["navigation", "fetch"] = Field(
        default="fetch",
        description="Traversal mode used when a session does not name one",
    )
    delay: Literal["uniform", "exponential"] = Field(
        default="uniform",
        description="Shape of the randomized inter-page delay",
    )
    min_delay_seconds: float = Field(
        default=3.0,
        ge=0.0,
        le=600.0,
        description="Lower bound of the inter-page delay",
    )
    max_delay_seconds: float = Field(
        default=6.0,
        ge=0.0,
        le=600.0,
        description="Upper bound of the inter-page delay",
    )
    mean_delay_seconds: float = Field(
        default=1.5,
        gt=0.0,
        le=600.0,
        description="Mean of the exponential delay profile",
    )
    daily_page_limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum pages per calendar day. None means unlimited.",
    )

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "SourceSettings":
        """Reject inverted delay ranges."""
        if self.max_delay_seconds < self.min_delay_seconds:
            raise ValueError("max_delay_seconds must be >= min_delay_seconds")
        return self


def _default_sources() -> dict[str, SourceSettings]:
    return {
        "amazon": SourceSettings(
            mode="navigation",
            delay="exponential",
            min_delay_seconds=0.5,
            max_delay_seconds=8.0,
            mean_delay_seconds=1.5,
            daily_page_limit=100,
        ),
        "rakuten": SourceSettings(
            mode="fetch",
            delay="uniform",
            min_delay_seconds=3.0,
            max_delay_seconds=6.0,
        ),
        "generic": SourceSettings(),
    }


class CrawlerSettings(BaseModel):
    """Crawl session behaviour."""

    sources: dict[str, SourceSettings] = Field(
        default_factory=_default_sources,
        description="Per-source settings keyed by source name",
    )
    micro_break_probability: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Chance per page of an extra pause on top of the regular delay",
    )
    micro_break_tiers: list[MicroBreakTier] = Field(
        default_factory=lambda: [
            MicroBreakTier(weight=0.6, min_seconds=3.0, max_seconds=10.0),
            MicroBreakTier(weight=0.3, min_seconds=15.0, max_seconds=45.0),
            MicroBreakTier(weight=0.1, min_seconds=60.0, max_seconds=180.0),
        ],
        description="Pause bands used when a micro-break happens",
    )
    wait_slice_seconds: float = Field(
        default=0.5,
        gt=0.0,
        le=10.0,
        description="Granularity at which waits check for a stop request",
    )
    max_consecutive_skip_pages: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Finish after this many pages in a row yield only duplicates",
    )
    shortfall_tolerance: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Warn when a full crawl collects less than (1 - tolerance) of the site's total",
    )
    volatile_params: list[str] = Field(
        default_factory=lambda: [
            "ref", "ref_", "qid", "sr", "th", "psc", "sid", "ie",
            "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
            "_ts", "_t", "scid", "s-id", "l-id", "rafcid",
        ],
        description="Query parameters ignored when comparing locations",
    )

    @field_validator("sources", mode="before")
    @classmethod
    def merge_source_defaults(cls, v: dict | None) -> dict:
        """Overlay partial per-source settings on the built-in profiles."""
        merged: dict = {
            name: profile.model_dump() for name, profile in _default_sources().items()
        }
        for name, value in (v or {}).items():
            if isinstance(value, SourceSettings):
                value = value.model_dump()
            merged[name] = {**merged.get(name, {}), **(value or {})}
        return merged

    def source(self, name: str) -> SourceSettings:
        """Settings for a source, falling back to the generic profile."""
        if name in self.sources:
            return self.sources[name]
        return self.sources.get("generic", SourceSettings())


class StorageSettings(BaseModel):
    """SQLite storage configuration."""

    database_path: Path = Field(
        default=Path("data/reviews.db"),
        description="Path to SQLite database file",
    )
    wal_mode: bool = Field(
        default=True,
        description="Enable WAL mode for better concurrent access",
    )
    cache_size_mb: int = Field(
        default=16,
        ge=1,
        le=512,
        description="SQLite cache size in megabytes",
    )

    @field_validator("database_path", mode="before")
    @classmethod
    def convert_to_path(cls, v: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(v) if isinstance(v, str) else v


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum logging level",
    )
    format: str = Field(
        default="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        description="Log message format string",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Date format for log timestamps",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path to log file. None means console only.",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Number of backup log files to keep",
    )
    log_to_console: bool = Field(
        default=True,
        description="Whether to output logs to console",
    )

    @field_validator("file_path", mode="before")
    @classmethod
    def convert_file_path(cls, v: str | Path | None) -> Path | None:
        """Convert string paths to Path objects."""
        if v is None:
            return None
        return Path(v) if isinstance(v, str) else v


class Settings(BaseModel):
    """
    Root configuration model containing all subsystem settings.

    Settings are loaded from YAML with environment variable overrides.
    """

    browser: BrowserSettings = Field(
        default_factory=BrowserSettings,
        description="Browser/Playwright settings",
    )
    http: HttpSettings = Field(
        default_factory=HttpSettings,
        description="Direct fetch settings",
    )
    crawler: CrawlerSettings = Field(
        default_factory=CrawlerSettings,
        description="Crawl session settings",
    )
    storage: StorageSettings = Field(
        default_factory=StorageSettings,
        description="Database storage settings",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )

    model_config = {
        "extra": "forbid",
        "validate_default": True,
    }
