"""
Site profiles.

A SourceProfile knows how one site lays out its review listings: how to
recognise its URLs, derive a stable target id, address page N, find
the listing from a product page, read the total review count and tell
whether a next page exists.
"""

import hashlib
import math
import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from review_crawler.crawler.urls import (
    get_query_param,
    host_of,
    normalize_url,
    set_query_param,
)


@dataclass(frozen=True)
class ReviewSelectors:
    """CSS selectors used by the record extractor."""

    container: str
    body: str
    title: str | None = None
    author: str | None = None
    date: str | None = None
    rating: str | None = None


_COUNT_PATTERN = re.compile(r"([0-9][0-9,]*)\s*(?:件|with reviews|reviews|ratings)", re.IGNORECASE)
_NEXT_TEXTS = ("次へ", "next", ">", "»", "›")


def _parse_int(text: str) -> int | None:
    try:
        return int(text.replace(",", ""))
    except ValueError:
        return None


class SourceProfile:
    """
    Base profile with generic behaviour.

    Subclasses override the URL rules and selectors for a specific site.
    """

    name = "generic"
    page_param = "page"
    page_size = 20
    review_selectors = ReviewSelectors(
        container='[itemprop="review"], .review, [class*="review-item"]',
        body='[itemprop="reviewBody"], .review-body, .review-text, p',
        title=".review-title, h3, h4",
        author='[itemprop="author"], .review-author, .author',
        date='[itemprop="datePublished"], time, .review-date, .date',
        rating='[itemprop="ratingValue"], .rating',
    )
    next_selectors: tuple[str, ...] = ('a[rel="next"]', 'link[rel="next"]')
    last_page_selectors: tuple[str, ...] = ()
    total_count_selectors: tuple[str, ...] = ('[itemprop="reviewCount"]',)
    listing_link_selectors: tuple[str, ...] = ()
    challenge_selectors: tuple[str, ...] = ()

    def matches(self, url: str) -> bool:
        return True

    def target_id(self, url: str) -> str:
        """Stable id for the product behind url."""
        base = normalize_url(url, {self.page_param})
        return hashlib.sha256(base.encode("utf-8")).hexdigest()[:12]

    def is_listing(self, url: str) -> bool:
        return True

    def listing_url(self, url: str) -> str | None:
        """Listing URL derivable from url alone, if any."""
        return url if self.is_listing(url) else None

    def page_number(self, url: str) -> int:
        value = get_query_param(url, self.page_param)
        if value and value.isdigit() and int(value) > 0:
            return int(value)
        return 1

    def page_url(self, url: str, page: int) -> str:
        return set_query_param(url, self.page_param, page)

    def base_url(self, url: str, volatile_params: list[str] | frozenset[str] = frozenset()) -> str:
        """
        Listing URL with the page and volatile parameters removed.

        Two locations with the same base URL are pages of the same listing.
        """
        drop = set(volatile_params) | {self.page_param}
        return normalize_url(self.page_url(url, 1), drop)

    def find_listing_link(self, html: str, page_url: str) -> str | None:
        """Locate the review listing link on a product page."""
        if not self.listing_link_selectors:
            return None
        soup = BeautifulSoup(html, "html.parser")
        for selector in self.listing_link_selectors:
            for link in soup.select(selector):
                href = link.get("href")
                if href and not href.startswith("#"):
                    absolute = urljoin(page_url, href)
                    if self.is_listing(absolute):
                        return absolute
        return None

    def expected_total(self, html: str) -> int | None:
        """Total review count shown on the page, if present."""
        soup = BeautifulSoup(html, "html.parser")
        for selector in self.total_count_selectors:
            element = soup.select_one(selector)
            if element is None:
                continue
            raw = element.get("content") or element.get_text(" ", strip=True)
            matches = _COUNT_PATTERN.findall(raw)
            if matches:
                value = _parse_int(matches[-1])
            else:
                digits = re.search(r"[0-9][0-9,]*", raw)
                value = _parse_int(digits.group(0)) if digits else None
            if value is not None:
                return value
        return None

    def total_pages(self, expected_total: int | None) -> int | None:
        if not expected_total:
            return None
        return max(1, math.ceil(expected_total / self.page_size))

    def is_last_page(self, html: str) -> bool:
        """True when the pagination markup explicitly marks the last page."""
        if not self.last_page_selectors:
            return False
        soup = BeautifulSoup(html, "html.parser")
        return any(soup.select_one(s) is not None for s in self.last_page_selectors)

    def next_page_url(self, html: str, page_url: str) -> str | None:
        """
        URL of the next listing page according to the page's own
        pagination markup, or None when none is found.
        """
        if self.is_last_page(html):
            return None

        soup = BeautifulSoup(html, "html.parser")

        for selector in self.next_selectors:
            for element in soup.select(selector):
                href = element.get("href")
                if href and not href.startswith(("#", "javascript:")):
                    return urljoin(page_url, href)

        current = self.page_number(page_url)
        for link in soup.find_all("a", href=True):
            text = link.get_text(strip=True).lower()
            if text in _NEXT_TEXTS or text == str(current + 1):
                candidate = urljoin(page_url, link["href"])
                if host_of(candidate) == host_of(page_url) and self.page_number(candidate) > current:
                    return candidate

        return None


class AmazonProfile(SourceProfile):
    """amazon.* product review listings (/product-reviews/ASIN)."""

    name = "amazon"
    page_param = "pageNumber"
    page_size = 10
    review_selectors = ReviewSelectors(
        container='[data-hook="review"]',
        body='[data-hook="review-body"]',
        title='[data-hook="review-title"] span:not([class])',
        author=".a-profile-name",
        date='[data-hook="review-date"]',
        rating="i.review-rating span",
    )
    next_selectors = ("li.a-last a", ".a-pagination li.a-last a")
    last_page_selectors = ("li.a-last.a-disabled",)
    total_count_selectors = ('[data-hook="cr-filter-info-review-rating-count"]',)
    listing_link_selectors = (
        'a[data-hook="see-all-reviews-link-foot"]',
        'a.a-link-emphasis[href*="product-reviews"]',
        '#reviews-medley-footer a[href*="product-reviews"]',
        'a[href*="product-reviews"]',
    )
    challenge_selectors = (
        'form[action="/errors/validateCaptcha"]',
        'form[action*="validateCaptcha"]',
        "#captchacharacters",
    )

    _ASIN = re.compile(r"/(?:dp|product-reviews|gp/product)/([A-Z0-9]{10})", re.IGNORECASE)

    def matches(self, url: str) -> bool:
        host = host_of(url)
        return host.startswith("amazon.") or ".amazon." in host

    def asin(self, url: str) -> str | None:
        match = self._ASIN.search(urlparse(url).path)
        return match.group(1).upper() if match else None

    def target_id(self, url: str) -> str:
        return self.asin(url) or super().target_id(url)

    def is_listing(self, url: str) -> bool:
        return "/product-reviews/" in urlparse(url).path

    def listing_url(self, url: str) -> str | None:
        if self.is_listing(url):
            return url
        asin = self.asin(url)
        if asin is None:
            return None
        parsed = urlparse(url)
        return f"{parsed.scheme or 'https'}://{parsed.netloc}/product-reviews/{asin}/?reviewerType=all_reviews"


class RakutenProfile(SourceProfile):
    """
    Rakuten review listings on review.rakuten.co.jp.

    Two paging styles exist: the current ?p=N and the older
    /item/1/<id>/N.S/ path segment, where S is the sort order.
    """

    name = "rakuten"
    page_param = "p"
    page_size = 30
    review_selectors = ReviewSelectors(
        container='[class*="review-entry"], .revRvwUserSec, .review-item',
        body='[class*="word-break-break-all"], .revRvwUserEntryCmt, .review-body',
        title=".revRvwUserEntryTtl, .review-title",
        author='[class*="reviewer-name"], .revUserNickname, .reviewer-name',
        date='[class*="text-container"] [class*="date"], .revRvwUserEntryDate, .review-date, time',
        rating='[class*="number-wrapper"], .revRvwUserEntryStar, .rating',
    )
    next_selectors = (
        'a[class*="next"]',
        "a.revPagination__next",
        'a[rel="next"]',
    )
    total_count_selectors = (
        '[itemtype*="AggregateRating"] [itemprop="reviewCount"]',
        '[class*="review-total--"]',
        ".revEvaCount",
        ".review-count",
    )
    listing_link_selectors = (
        'a[href*="review.rakuten.co.jp/item"]',
        'a[href*="review.rakuten.co.jp"]',
    )

    _PATH_PAGE = re.compile(r"/(\d+)\.(\d+)/?$")
    _ITEM = re.compile(r"^/([^/]+)/([^/?#]+)")
    _REVIEW_ITEM = re.compile(r"^/item/\d+/([^/?#]+)")

    def matches(self, url: str) -> bool:
        return host_of(url).endswith("rakuten.co.jp")

    def target_id(self, url: str) -> str:
        parsed = urlparse(url)
        host = parsed.netloc.lower()
        if host.startswith("review."):
            match = self._REVIEW_ITEM.match(parsed.path)
            if match:
                return match.group(1)
        if host.startswith("item."):
            match = self._ITEM.match(parsed.path)
            if match:
                return f"{match.group(1)}_{match.group(2)}"
        return super().target_id(url)

    def is_listing(self, url: str) -> bool:
        return host_of(url).startswith("review.")

    def page_number(self, url: str) -> int:
        value = get_query_param(url, self.page_param)
        if value and value.isdigit() and int(value) > 0:
            return int(value)
        match = self._PATH_PAGE.search(urlparse(url).path)
        if match:
            return int(match.group(1))
        value = get_query_param(url, "page")
        if value and value.isdigit() and int(value) > 0:
            return int(value)
        return 1

    def page_url(self, url: str, page: int) -> str:
        parsed = urlparse(url)
        match = self._PATH_PAGE.search(parsed.path)
        if match and get_query_param(url, self.page_param) is None:
            path = self._PATH_PAGE.sub(f"/{page}.{match.group(2)}/", parsed.path)
            return parsed._replace(path=path).geturl()
        return set_query_param(url, self.page_param, page)


GENERIC = SourceProfile()
AMAZON = AmazonProfile()
RAKUTEN = RakutenProfile()

PROFILES: dict[str, SourceProfile] = {
    AMAZON.name: AMAZON,
    RAKUTEN.name: RAKUTEN,
    GENERIC.name: GENERIC,
}


def detect_source(url: str) -> SourceProfile:
    """Pick the profile whose URL rules match, falling back to generic."""
    for profile in (AMAZON, RAKUTEN):
        if profile.matches(url):
            return profile
    return GENERIC


def get_profile(name: str) -> SourceProfile:
    return PROFILES.get(name, GENERIC)
