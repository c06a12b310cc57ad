"""
Review extraction from listing HTML.

The SelectorExtractor walks the review containers of a listing page
using the CSS selectors of the page's source profile. When the page has
no matching containers it falls back to schema.org Review objects in
JSON-LD blocks, which many generic shops publish.
"""

import json
import re
from typing import Any, Protocol, runtime_checkable

from bs4 import BeautifulSoup, Tag

from review_crawler.crawler.models import PageContent, Review
from review_crawler.crawler.sources import SourceProfile, detect_source
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)

_RATING = re.compile(r"(\d+(?:[.,]\d+)?)")
# "5つ星のうち4.0": the scale comes first, the score after
_SCALE_FIRST = re.compile(r"のうち\s*(\d+(?:[.,]\d+)?)")


@runtime_checkable
class RecordExtractor(Protocol):
    """Turns a page into records. Must not raise; returns [] on bad input."""

    def extract(self, content: PageContent, profile: SourceProfile | None = None) -> list[Review]: ...


def _clean(text: str | None) -> str:
    if not text:
        return ""
    return " ".join(text.split())


def _parse_rating(text: str | None) -> float | None:
    if not text:
        return None
    match = _SCALE_FIRST.search(text) or _RATING.search(text)
    if not match:
        return None
    try:
        return float(match.group(1).replace(",", "."))
    except ValueError:
        return None


class SelectorExtractor:
    """
    CSS-selector based record extractor.

    Example:
        >>> extractor = SelectorExtractor()
        >>> reviews = extractor.extract(PageContent(url=url, html=html))
    """

    def extract(self, content: PageContent, profile: SourceProfile | None = None) -> list[Review]:
        if not content.html:
            return []

        profile = profile or detect_source(content.url)

        try:
            soup = BeautifulSoup(content.html, "html.parser")
            reviews = [
                review
                for container in soup.select(profile.review_selectors.container)
                if (review := self._from_container(container, profile, content.url)) is not None
            ]
            if not reviews:
                reviews = self._from_json_ld(soup, content.url)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Could not extract reviews from {content.url}: {e}")
            return []

        logger.debug(f"Extracted {len(reviews)} reviews from {content.url}")
        return reviews

    def _from_container(self, container: Tag, profile: SourceProfile, url: str) -> Review | None:
        selectors = profile.review_selectors

        body = self._text(container, selectors.body)
        if not body:
            return None

        rating_element = container.select_one(selectors.rating) if selectors.rating else None
        rating = None
        if rating_element is not None:
            rating = _parse_rating(
                rating_element.get("content")
                or rating_element.get("aria-label")
                or rating_element.get_text(" ", strip=True)
            )

        date_element = container.select_one(selectors.date) if selectors.date else None
        date = None
        if date_element is not None:
            date = date_element.get("datetime") or date_element.get("content") or _clean(
                date_element.get_text(" ")
            )

        return Review(
            body=body,
            title=self._text(container, selectors.title),
            author=self._text(container, selectors.author),
            date=date or None,
            rating=rating,
            review_id=container.get("id") or None,
            url=url,
        )

    @staticmethod
    def _text(container: Tag, selector: str | None) -> str:
        if not selector:
            return ""
        element = container.select_one(selector)
        return _clean(element.get_text(" ")) if element is not None else ""

    def _from_json_ld(self, soup: BeautifulSoup, url: str) -> list[Review]:
        reviews: list[Review] = []

        for script in soup.find_all("script", type="application/ld+json"):
            text = script.get_text(strip=True)
            if not text:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                logger.debug(f"Failed to parse JSON-LD: {e}")
                continue

            for item in self._walk(data):
                review = self._review_from_ld(item, url)
                if review is not None:
                    reviews.append(review)

        return reviews

    def _walk(self, data: Any):
        """Yield every dict in a JSON-LD document whose @type is Review."""
        if isinstance(data, list):
            for item in data:
                yield from self._walk(item)
        elif isinstance(data, dict):
            kind = data.get("@type")
            if kind == "Review" or (isinstance(kind, list) and "Review" in kind):
                yield data
            for key in ("review", "reviews", "@graph"):
                if key in data:
                    yield from self._walk(data[key])

    @staticmethod
    def _review_from_ld(item: dict, url: str) -> Review | None:
        body = _clean(item.get("reviewBody") or item.get("description"))
        if not body:
            return None

        author = item.get("author")
        if isinstance(author, dict):
            author = author.get("name")
        elif isinstance(author, list) and author:
            first = author[0]
            author = first.get("name") if isinstance(first, dict) else first

        rating = item.get("reviewRating")
        if isinstance(rating, dict):
            rating = rating.get("ratingValue")

        return Review(
            body=body,
            title=_clean(item.get("name") or item.get("headline")),
            author=_clean(str(author)) if author else "",
            date=item.get("datePublished"),
            rating=_parse_rating(str(rating)) if rating is not None else None,
            url=url,
        )
