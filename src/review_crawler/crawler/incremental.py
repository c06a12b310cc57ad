"""
Incremental (delta) filtering against a watermark date.

Listing dates arrive in whatever format the site renders: 2024/6/5,
2024-06-05, 2024年6月5日, "June 5, 2024" and so on, usually embedded in
a longer string ("Reviewed in Japan on June 5, 2024"). Everything is
normalized to YYYY-MM-DD, which compares correctly as a string.
"""

import re
from datetime import date

from review_crawler.crawler.models import Review
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)

_NUMERIC_DATE = re.compile(r"(\d{4})\s*[/\-.年]\s*(\d{1,2})\s*[/\-.月]\s*(\d{1,2})")

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_MONTH_NAME = r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"
_MONTH_FIRST = re.compile(_MONTH_NAME + r"\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})", re.IGNORECASE)
_DAY_FIRST = re.compile(r"(\d{1,2})(?:st|nd|rd|th)?\s+" + _MONTH_NAME + r",?\s+(\d{4})", re.IGNORECASE)


def normalize_date(value: str | None) -> str | None:
    """
    Normalize a date string to YYYY-MM-DD.

    Args:
        value: Date text as rendered by a site, or None

    Returns:
        ISO date string, or None when no valid calendar date is found
    """
    if not value:
        return None

    text = value.strip()

    match = _NUMERIC_DATE.search(text)
    if match:
        return _build(match.group(1), match.group(2), match.group(3))

    match = _MONTH_FIRST.search(text)
    if match:
        return _build(match.group(3), _MONTHS[match.group(1).lower()[:3]], match.group(2))

    match = _DAY_FIRST.search(text)
    if match:
        return _build(match.group(3), _MONTHS[match.group(2).lower()[:3]], match.group(1))

    return None


def _build(year: str | int, month: str | int, day: str | int) -> str | None:
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def is_valid_watermark(value: str | None) -> bool:
    """True for None or any string normalize_date understands."""
    return value is None or normalize_date(value) is not None


class IncrementalFilter:
    """
    Keeps records dated on or after the watermark.

    Records with no date, or a date that cannot be parsed, are kept:
    losing a review is worse than collecting one twice, and the
    fingerprint check catches the latter anyway.

    Example:
        >>> f = IncrementalFilter("2024-06-01")
        >>> kept, dropped = f.partition(records)
    """

    def __init__(self, watermark: str | None) -> None:
        self.watermark = normalize_date(watermark)
        if watermark and self.watermark is None:
            logger.warning(f"Ignoring unparseable watermark {watermark!r}")

    @property
    def active(self) -> bool:
        return self.watermark is not None

    def is_new(self, record: Review) -> bool:
        if self.watermark is None:
            return True
        record_date = normalize_date(record.date)
        if record_date is None:
            return True
        return record_date >= self.watermark

    def partition(self, records: list[Review]) -> tuple[list[Review], int]:
        """
        Split records into those to keep and a count of dropped ones.

        Never raises; input order is preserved.
        """
        kept = [r for r in records if self.is_new(r)]
        return kept, len(records) - len(kept)
