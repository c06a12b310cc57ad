"""
Tests for navigation-mode sessions.

Every page arrives through resume_if_pending from a brand-new
controller, the way a fresh execution context would deliver it.
"""

import pytest

from review_crawler.crawler.models import EndReason, PageContent, SessionStatus
from review_crawler.crawler.runner import NavigationDriver, SessionRunner
from review_crawler.crawler.sources import GENERIC
from review_crawler.runtime import Runtime
from tests.conftest import (
    LISTING_URL,
    FakeLoader,
    listing_html,
    page_url,
    review_html,
)

TARGET_ID = GENERIC.target_id(LISTING_URL)

AMAZON_PRODUCT = "https://www.amazon.co.jp/dp/B0ABC12345"
AMAZON_LISTING = "https://www.amazon.co.jp/product-reviews/B0ABC12345/?reviewerType=all_reviews"

AMAZON_LISTING_HTML = """
<html><body>
<div data-hook="cr-filter-info-review-rating-count">2 ratings, 2 with reviews</div>
<div data-hook="review" id="R1">
  <span class="a-profile-name">Taro</span>
  <i class="review-rating"><span>5つ星のうち5.0</span></i>
  <span data-hook="review-date">2024年6月10日に日本でレビュー済み</span>
  <span data-hook="review-body"><span>とても良い商品でした</span></span>
</div>
<div data-hook="review" id="R2">
  <span class="a-profile-name">Hanako</span>
  <span data-hook="review-date">2024年6月2日に日本でレビュー済み</span>
  <span data-hook="review-body"><span>普通です</span></span>
</div>
<ul class="a-pagination"><li class="a-last a-disabled">次へ</li></ul>
</body></html>
"""

AMAZON_CAPTCHA_HTML = """
<html><body>
<form action="/errors/validateCaptcha"><input id="captchacharacters"></form>
</body></html>
"""


def page(number: int, html: str, url: str | None = None) -> PageContent:
    return PageContent(url=url or page_url(number), html=html, page_number=number)


class TestNavigationResume:
    """Tests for resume_if_pending with a loaded page."""

    @pytest.mark.asyncio
    async def test_first_page_processed(self, runtime: Runtime, sink):
        """The first listing page is collected and the next location stored."""
        runtime.controller().start_session(LISTING_URL, mode="navigation")
        html = listing_html([review_html("One"), review_html("Two")], next_page=2)

        result = await runtime.controller().resume_if_pending(page(1, html, LISTING_URL))

        session = runtime.sessions.load(TARGET_ID)
        assert result.resumed is True
        assert session.status == SessionStatus.PAGINATING
        assert session.current_page == 2
        assert session.last_processed_page == 1
        assert session.next_location == page_url(2)
        assert session.collected_count == 2
        assert len(sink.records) == 2

    @pytest.mark.asyncio
    async def test_resume_is_idempotent(self, runtime: Runtime, sink):
        """Delivering the same page twice collects it once."""
        runtime.controller().start_session(LISTING_URL, mode="navigation")
        content = page(1, listing_html([review_html("One")], next_page=2), LISTING_URL)

        await runtime.controller().resume_if_pending(content)
        before = runtime.sessions.load(TARGET_ID)
        second = await runtime.controller().resume_if_pending(
            page(1, listing_html([review_html("One")], next_page=2), LISTING_URL)
        )
        after = runtime.sessions.load(TARGET_ID)

        assert second.resumed is False
        assert second.reason == "stale"
        assert len(sink.batches) == 1
        assert after.current_page == before.current_page
        assert after.collected_count == before.collected_count
        assert after.updated_at == before.updated_at

    @pytest.mark.asyncio
    async def test_volatile_params_do_not_make_page_new(self, runtime: Runtime, sink):
        """Tracking parameters do not turn a processed page into a new one."""
        runtime.controller().start_session(LISTING_URL, mode="navigation")
        html = listing_html([review_html("One")], next_page=2)
        await runtime.controller().resume_if_pending(page(1, html, LISTING_URL))

        result = await runtime.controller().resume_if_pending(
            page(1, html, LISTING_URL + "?utm_source=mail&ref=abc")
        )

        assert result.resumed is False
        assert len(sink.batches) == 1

    @pytest.mark.asyncio
    async def test_no_duplicates_across_context_restart(self, runtime: Runtime, sink):
        """A record seen before the restart is not emitted again after it."""
        runtime.controller().start_session(LISTING_URL, mode="navigation")
        await runtime.controller().resume_if_pending(
            page(1, listing_html([review_html("Shared", "Ken")], next_page=2), LISTING_URL)
        )

        result = await runtime.controller().resume_if_pending(
            page(2, listing_html([review_html("Shared", "Ken"), review_html("Fresh", "Mia")]))
        )

        session = runtime.sessions.load(TARGET_ID)
        assert result.resumed is True
        assert [r.body for r in sink.records] == ["Shared", "Fresh"]
        assert session.duplicates_dropped == 1
        assert session.status == SessionStatus.COMPLETED
        assert session.end_reason == EndReason.NO_MORE_PAGES

    @pytest.mark.asyncio
    async def test_changed_listing_is_processed(self, runtime: Runtime, sink):
        """A different base URL counts as new even at a lower page number."""
        sorted_url = LISTING_URL + "?sort=recent"
        runtime.controller().start_session(LISTING_URL, mode="navigation")
        for number in (1, 2, 3):
            await runtime.controller().resume_if_pending(
                page(number, listing_html([review_html(f"Page {number}")], next_page=number + 1))
            )
        before = runtime.sessions.load(TARGET_ID)

        result = await runtime.controller().resume_if_pending(
            page(1, listing_html([review_html("Sorted")], next_page=2), sorted_url)
        )

        session = runtime.sessions.load(TARGET_ID)
        assert result.resumed is True
        assert [r.body for r in sink.records] == ["Page 1", "Page 2", "Page 3", "Sorted"]
        assert before.current_page == 4
        assert session.current_page >= before.current_page
        assert session.listing_page == 2
        assert session.next_location == page_url(2, sorted_url)

    @pytest.mark.asyncio
    async def test_non_navigation_session_ignores_pages(self, runtime: Runtime):
        """Fetch sessions do not accept delivered pages."""
        runtime.controller().start_session(LISTING_URL, mode="fetch")

        result = await runtime.controller().resume_if_pending(
            page(1, listing_html([review_html("One")]), LISTING_URL)
        )

        assert result.resumed is False

    @pytest.mark.asyncio
    async def test_redirect_to_amazon_listing(self, runtime: Runtime, sink):
        """A product-page start continues on the review listing."""
        start = runtime.controller().start_session(AMAZON_PRODUCT, mode="navigation")
        assert start.location == AMAZON_LISTING

        result = await runtime.controller().resume_if_pending(
            PageContent(url=AMAZON_LISTING, html=AMAZON_LISTING_HTML)
        )

        session = runtime.sessions.load("B0ABC12345")
        assert result.resumed is True
        assert session.status == SessionStatus.COMPLETED
        assert session.expected_total == 2
        assert [r.author for r in sink.records] == ["Taro", "Hanako"]
        assert sink.records[0].rating == 5.0

    @pytest.mark.asyncio
    async def test_redirect_via_product_page_link(self, runtime: Runtime):
        """A product page without a derivable listing is searched for the link."""
        runtime.controller().start_session("https://item.rakuten.co.jp/shop/item-1/", mode="navigation")
        product_html = (
            '<html><body><a href="https://review.rakuten.co.jp/item/1/123_456/1.1/">'
            "Reviews</a></body></html>"
        )

        result = await runtime.controller().resume_if_pending(
            PageContent(url="https://item.rakuten.co.jp/shop/item-1/", html=product_html)
        )

        session = runtime.sessions.load("shop_item-1")
        assert result.reason == "redirecting"
        assert session.status == SessionStatus.REDIRECTING
        assert session.next_location == "https://review.rakuten.co.jp/item/1/123_456/1.1/"

    @pytest.mark.asyncio
    async def test_captcha_fails_session(self, runtime: Runtime, sink):
        """A captcha page fails the session with an actionable message."""
        runtime.controller().start_session(AMAZON_PRODUCT, mode="navigation")

        await runtime.controller().resume_if_pending(
            PageContent(url=AMAZON_LISTING, html=AMAZON_CAPTCHA_HTML)
        )

        session = runtime.sessions.load("B0ABC12345")
        assert session.status == SessionStatus.FAILED
        assert session.end_reason == EndReason.CHALLENGE
        assert sink.records == []

    @pytest.mark.asyncio
    async def test_missing_listing_link_completes_empty(self, runtime: Runtime):
        """A product page without any review link ends the session."""
        runtime.controller().start_session("https://item.rakuten.co.jp/shop/item-1/", mode="navigation")

        await runtime.controller().resume_if_pending(
            PageContent(url="https://item.rakuten.co.jp/shop/item-1/", html="<html><body></body></html>")
        )

        session = runtime.sessions.load("shop_item-1")
        assert session.status == SessionStatus.COMPLETED
        assert session.end_reason == EndReason.EXTRACTION_EMPTY

    @pytest.mark.asyncio
    async def test_stopped_session_ignores_pages(self, runtime: Runtime, sink):
        """After a stop a late page is not processed."""
        runtime.controller().start_session(LISTING_URL, mode="navigation")
        runtime.controller().stop_session()

        result = await runtime.controller().resume_if_pending(
            page(1, listing_html([review_html("Late")]), LISTING_URL)
        )

        assert result.resumed is False
        assert sink.records == []


class TestNavigationDriver:
    """Tests for the page-load loop."""

    @pytest.mark.asyncio
    async def test_drive_to_completion(self, runtime: Runtime, sink):
        """The driver opens each stored location until the session ends."""
        loader = FakeLoader({
            LISTING_URL: listing_html([review_html("One")], next_page=2),
            page_url(2): listing_html([review_html("Two")]),
        })
        runtime.controller().start_session(LISTING_URL, mode="navigation")

        session = await NavigationDriver(runtime.controller, loader).drive()

        assert session.status == SessionStatus.COMPLETED
        assert loader.loads == [LISTING_URL, page_url(2)]
        assert [r.body for r in sink.records] == ["One", "Two"]

    @pytest.mark.asyncio
    async def test_load_failure_fails_session(self, runtime: Runtime):
        """A page that cannot be loaded fails the session."""
        loader = FakeLoader({LISTING_URL: listing_html([review_html("One")], next_page=2)})
        runtime.controller().start_session(LISTING_URL, mode="navigation")

        session = await NavigationDriver(runtime.controller, loader).drive()

        assert session.status == SessionStatus.FAILED
        assert session.end_reason == EndReason.TRANSPORT
        assert session.failed_page == 2

    @pytest.mark.asyncio
    async def test_runner_without_loader_fails_navigation(self, runtime: Runtime):
        """Navigation sessions cannot run without a page loader."""
        runtime.controller().start_session(LISTING_URL, mode="navigation")

        session = await SessionRunner(runtime.controller).run_active()

        assert session.status == SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_runner_dispatches_fetch_sessions(self, runtime: Runtime, fetcher):
        """Fetch sessions run their own loop."""
        fetcher.pages = {1: listing_html([review_html("One")])}
        runtime.controller().start_session(LISTING_URL, mode="fetch")

        session = await SessionRunner(runtime.controller).run_active()

        assert session.status == SessionStatus.COMPLETED
        assert session.collected_count == 1
