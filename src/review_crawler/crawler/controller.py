"""
Crawl session controller.

Owns the session state machine. Every decision is taken against the
persisted session, never against in-memory leftovers, so a controller
built in a brand-new execution context picks up exactly where the
previous one stopped.

Per page the controller:
1. rejects verification pages
2. extracts records (or takes those a fetch strategy already parsed)
3. drops records it has already seen
4. applies the incremental watermark
5. persists the new fingerprints, then hands the records to the sink
6. persists progress, and only then waits before the next page
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable

from review_crawler.config.settings import CrawlerSettings
from review_crawler.core.exceptions import (
    ChallengeDetected,
    ExtractionEmpty,
    QuotaExceeded,
    ReviewCrawlerError,
    SessionStateError,
    SinkError,
    StaleResume,
    StorageError,
    TransportError,
    get_retry_delay,
    is_retryable,
)
from review_crawler.crawler.events import SessionEvents
from review_crawler.crawler.fingerprint import DedupEngine
from review_crawler.crawler.incremental import IncrementalFilter, is_valid_watermark, normalize_date
from review_crawler.crawler.models import (
    CrawlSession,
    EndReason,
    PageContent,
    Review,
    SessionStatus,
    TraversalMode,
)
from review_crawler.crawler.rate_limiter import DailyPageQuota, PageRateLimiter
from review_crawler.crawler.session_store import SessionStore
from review_crawler.crawler.sources import SourceProfile, detect_source, get_profile
from review_crawler.crawler.traversal import (
    FetchStrategy,
    NavigationStrategy,
    TraversalStrategy,
)
from review_crawler.extraction.review_extractor import RecordExtractor
from review_crawler.storage.sink import RecordSink
from review_crawler.utils.logging import get_logger
from review_crawler.utils.metrics import (
    SESSIONS_COMPLETED,
    SESSIONS_FAILED,
    SINK_ERRORS,
    Metrics,
    record_page,
)

logger = get_logger(__name__)

# Completion reasons after which the next incremental run may start from today
WATERMARK_ADVANCING = frozenset(
    {EndReason.NO_MORE_PAGES, EndReason.WATERMARK_REACHED, EndReason.ALL_DUPLICATES}
)


@dataclass
class StartResult:
    """Outcome of start_session."""

    accepted: bool
    reason: str = ""
    session: CrawlSession | None = None
    location: str | None = None


@dataclass
class ResumeResult:
    """Outcome of resume_if_pending."""

    resumed: bool
    reason: str = ""
    session: CrawlSession | None = None


class _StopSignal(Exception):
    """A stop was persisted by someone else while this controller worked."""


class CrawlSessionController:
    """
    Drives one crawl session at a time.

    Example:
        >>> controller = CrawlSessionController(sessions, strategies, extractor, sink, limiter)
        >>> result = controller.start_session("https://www.amazon.co.jp/dp/B0ABC12345")
        >>> await controller.resume_if_pending(page_content)
    """

    def __init__(
        self,
        sessions: SessionStore,
        strategies: dict[TraversalMode, TraversalStrategy],
        extractor: RecordExtractor,
        sink: RecordSink,
        rate_limiter: PageRateLimiter,
        quota: DailyPageQuota | None = None,
        events: SessionEvents | None = None,
        settings: CrawlerSettings | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.sessions = sessions
        self.strategies = strategies
        self.extractor = extractor
        self.sink = sink
        self.rate_limiter = rate_limiter
        self.quota = quota
        self.events = events or SessionEvents()
        self.settings = settings or rate_limiter.settings
        self._today = today

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start_session(
        self,
        target_url: str,
        mode: TraversalMode | str | None = None,
        incremental_only: bool = False,
        watermark_date: str | None = None,
        queue_name: str | None = None,
        force: bool = False,
    ) -> StartResult:
        """
        Create a session for a target and make it the active one.

        Rejected when another session is live (unless force, which stops
        it first), when the watermark is not a date, or when no strategy
        exists for the requested mode.
        """
        profile = detect_source(target_url)
        target_id = profile.target_id(target_url)

        if not is_valid_watermark(watermark_date):
            return StartResult(False, f"invalid watermark date {watermark_date!r}")

        try:
            resolved_mode = TraversalMode(mode) if mode else TraversalMode(
                self.settings.source(profile.name).mode)
        except ValueError:
            return StartResult(False, f"unknown traversal mode {mode!r}")

        if resolved_mode not in self.strategies:
            return StartResult(False, f"no {resolved_mode.value} strategy configured")

        active = self.sessions.active()
        if active is not None and active.is_live:
            if not force:
                return StartResult(
                    False,
                    f"session for {active.target_id} is already {active.status.value}",
                    session=active,
                )
            active.transition(SessionStatus.STOPPED, EndReason.SUPERSEDED)
            self.sessions.save(active)
            self.events.log(f"Stopped session for {active.target_id} to start {target_id}", "warning")

        watermark = normalize_date(watermark_date) if watermark_date else None
        if incremental_only and watermark is None:
            watermark = self.sessions.get_watermark(target_id)
            if watermark is None:
                self.events.log(
                    f"No previous collection recorded for {target_id}; collecting all reviews"
                )

        listing = profile.listing_url(target_url)
        session = CrawlSession(
            target_id=target_id,
            source=profile.name,
            mode=resolved_mode,
            start_url=target_url,
            listing_url=listing or "",
            current_page=profile.page_number(target_url) if listing == target_url else 1,
            incremental_only=incremental_only,
            watermark_date=watermark,
            queue_name=queue_name,
        )

        if resolved_mode is TraversalMode.NAVIGATION and not profile.is_listing(target_url):
            session.transition(SessionStatus.REDIRECTING)
            session.next_location = listing or target_url
        else:
            session.transition(SessionStatus.COLLECTING)
            if resolved_mode is TraversalMode.NAVIGATION:
                session.next_location = target_url

        self.sessions.save(session)
        self.sessions.set_active(target_id)

        if watermark and incremental_only:
            self.events.log(f"Collecting reviews for {target_id} dated {watermark} or later")
        else:
            self.events.log(f"Collecting reviews for {target_id} ({profile.name}, {resolved_mode.value})")
        self.events.progress(session.snapshot())

        return StartResult(True, "started", session=session, location=session.next_location)

    def stop_session(self, target_id: str | None = None) -> bool:
        """
        Stop the active session (or the named one).

        Running loops notice the persisted status at their next
        suspension point.

        Returns:
            True if a live session was stopped
        """
        session = self.sessions.load(target_id) if target_id else self.sessions.active()
        if session is None or not session.is_live:
            return False

        self._finish(session, SessionStatus.STOPPED, EndReason.STOP_REQUESTED, "Stopped by request")
        return True

    async def resume_if_pending(self, content: PageContent | None = None) -> ResumeResult:
        """
        Continue the active session.

        Navigation sessions pass the page loaded by the new context.
        Fetch sessions pass nothing and run their loop from the
        persisted page counter.
        """
        try:
            session = self.sessions.active()
        except StorageError as e:
            logger.error(f"Cannot read active session: {e}")
            return ResumeResult(False, "session state unreadable")

        if session is None or not session.is_live:
            return ResumeResult(False, "no pending session", session)

        if content is None:
            if session.mode is not TraversalMode.FETCH:
                return ResumeResult(False, "navigation sessions resume with a loaded page", session)
            if session.listing_page <= session.last_processed_page:
                logger.debug(f"Nothing to resume for {session.target_id}")
                return ResumeResult(False, "stale", session)
            return ResumeResult(True, "resumed", await self.run())

        if session.mode is not TraversalMode.NAVIGATION:
            return ResumeResult(False, "fetch sessions do not accept pages", session)

        try:
            return await self._resume_navigation(session, content)
        except StaleResume as e:
            logger.debug(f"Ignoring resume: {e}")
            return ResumeResult(False, "stale", session)
        except _StopSignal:
            return ResumeResult(True, "stopped", self.sessions.load(session.target_id))
        except ReviewCrawlerError as e:
            self._fail(session, e)
            return ResumeResult(True, "failed", session)

    async def run(self) -> CrawlSession | None:
        """
        Run the active fetch-mode session until it reaches a terminal status.

        Returns:
            The session as last persisted
        """
        session = self.sessions.active()
        if session is None or not session.is_live or session.mode is not TraversalMode.FETCH:
            return session

        strategy = self.strategies.get(TraversalMode.FETCH)
        if not isinstance(strategy, FetchStrategy):
            self._fail(session, SessionStateError("No fetch strategy configured", session.target_id))
            return session

        try:
            if not session.listing_url:
                await self._discover_listing(session, strategy)

            while session.is_live:
                self._check_stop(session)
                if self.quota is not None:
                    self.quota.check(session.source)

                page_number = session.listing_page
                fetched = await strategy.fetch_next(page_number, session)

                # results of a fetch that straddled a stop are discarded
                self._check_stop(session)
                await self._process_page(session, fetched.content, fetched.records, fetched.has_next)

        except _StopSignal:
            session = self.sessions.load(session.target_id) or session
            logger.info(f"Session for {session.target_id} stopped")
        except QuotaExceeded as e:
            self._finish(session, SessionStatus.STOPPED, EndReason.QUOTA_EXHAUSTED, e.message)
        except ReviewCrawlerError as e:
            self._fail(session, e)

        return session

    def record_failure(self, error: ReviewCrawlerError) -> CrawlSession | None:
        """Fail the active session on an error raised outside the controller, such as a page load."""
        session = self.sessions.active()
        if session is None or not session.is_live:
            return session
        self._fail(session, error)
        return session

    def active_session(self) -> CrawlSession | None:
        return self.sessions.active()

    def get_session(self, target_id: str) -> CrawlSession | None:
        return self.sessions.load(target_id)

    # ------------------------------------------------------------------
    # Navigation resume
    # ------------------------------------------------------------------

    async def _resume_navigation(self, session: CrawlSession, content: PageContent) -> ResumeResult:
        profile = get_profile(session.source)
        strategy = self.strategies[TraversalMode.NAVIGATION]

        self._check_stop(session)
        strategy.inspect(content, session)

        if session.status is SessionStatus.REDIRECTING:
            if not profile.is_listing(content.url):
                link = profile.find_listing_link(content.html, content.url)
                if link is None:
                    raise ExtractionEmpty("Review listing link not found on product page", url=content.url)
                if link == session.next_location:
                    raise StaleResume("Already redirecting to the listing")
                session.listing_url = link
                session.next_location = link
                self._persist(session)
                self.events.log(f"Opening review listing {link}")
                return ResumeResult(True, "redirecting", session)

            if not session.listing_url:
                session.listing_url = content.url
            session.transition(SessionStatus.COLLECTING)

        elif not profile.is_listing(content.url):
            raise StaleResume("Location is not a review listing")

        page = content.page_number or profile.page_number(content.url)
        base = profile.base_url(content.url, self.settings.volatile_params)

        if (
            session.last_processed_url is not None
            and base == session.last_processed_url
            and page <= session.last_processed_page
        ):
            raise StaleResume(
                "Location already processed", page=page, last_page=session.last_processed_page
            )

        if base != session.last_processed_url and session.last_processed_url is not None:
            logger.info(f"Listing changed for {session.target_id}; continuing on {base}")
            session.listing_url = profile.page_url(content.url, 1)
            session.advance_to(max(session.current_page, page))
            session.listing_offset = session.current_page - page
        elif page > session.listing_page:
            session.advance_to(page + session.listing_offset)
        if session.status is SessionStatus.PAGINATING:
            session.transition(SessionStatus.COLLECTING)

        content.page_number = page
        await self._process_page(session, content)
        return ResumeResult(True, "resumed", session)

    # ------------------------------------------------------------------
    # Page processing
    # ------------------------------------------------------------------

    async def _process_page(
        self,
        session: CrawlSession,
        content: PageContent,
        records: list[Review] | None = None,
        has_next: bool | None = None,
    ) -> None:
        strategy = self.strategies[session.mode]
        profile = get_profile(session.source)
        page = content.page_number or profile.page_number(content.url)

        if records is None:
            records = self.extractor.extract(content, profile)
        if has_next is None:
            has_next = strategy.has_next(content, session)

        if session.expected_total is None and session.last_processed_page == 0:
            self._read_expected_total(session, profile, content)

        if not records:
            self._mark_processed(session, profile, content, page)
            self.events.log(f"No reviews found on page {page}; finishing", "warning")
            self._finish(session, SessionStatus.COMPLETED, EndReason.EXTRACTION_EMPTY)
            return

        fresh, duplicates = DedupEngine(session).filter(records)
        session.duplicates_dropped += duplicates

        if not fresh:
            session.consecutive_skip_pages += 1
            self._mark_processed(session, profile, content, page)
            record_page(0, duplicates, 0)
            self.events.log(f"Page {page}: all {duplicates} reviews already collected")

            if session.consecutive_skip_pages >= self.settings.max_consecutive_skip_pages:
                self.events.log(
                    f"{session.consecutive_skip_pages} pages in a row held only known reviews; finishing"
                )
                self._finish(session, SessionStatus.COMPLETED, EndReason.ALL_DUPLICATES)
                return
            if not has_next:
                self._finish(session, SessionStatus.COMPLETED, EndReason.NO_MORE_PAGES)
                return
            await self._advance(session, strategy, page)
            return

        session.consecutive_skip_pages = 0

        watermark_dropped = 0
        if session.incremental_only and session.watermark_date:
            incremental = IncrementalFilter(session.watermark_date)
            kept = [(fp, r) for fp, r in fresh if incremental.is_new(r)]
            watermark_dropped = len(fresh) - len(kept)
            fresh = kept
            session.stale_dropped += watermark_dropped
            if watermark_dropped:
                session.stop_after_page = True
                self.events.log(
                    f"Page {page}: {watermark_dropped} reviews predate {session.watermark_date}"
                )

        if not fresh:
            self._mark_processed(session, profile, content, page)
            record_page(0, duplicates, watermark_dropped)
            self._finish(session, SessionStatus.COMPLETED, EndReason.WATERMARK_REACHED)
            return

        collected_at = datetime.now().isoformat(timespec="seconds")
        decorated = [
            replace(
                record,
                target_id=session.target_id,
                source=session.source,
                page=page,
                collected_at=collected_at,
            )
            for _, record in fresh
        ]

        session.add_fingerprints([fp for fp, _ in fresh])
        self._persist(session)

        emitted = await self._emit(session, decorated)
        session.collected_count += emitted
        self._mark_processed(session, profile, content, page)
        record_page(emitted, duplicates, watermark_dropped)
        self.events.log(f"Page {page}: collected {emitted} reviews ({session.collected_count} total)")

        if self._stop_requested(session):
            self._settle_stopped(session)
            raise _StopSignal()

        if session.stop_after_page:
            self._finish(session, SessionStatus.COMPLETED, EndReason.WATERMARK_REACHED)
        elif not has_next:
            self._finish(session, SessionStatus.COMPLETED, EndReason.NO_MORE_PAGES)
        else:
            await self._advance(session, strategy, page)

    async def _emit(self, session: CrawlSession, records: list[Review]) -> int:
        try:
            await self.sink.emit(records)
        except SinkError as e:
            Metrics.get().increment(SINK_ERRORS)
            self.events.log(f"Could not store {len(records)} reviews: {e}", "error")
            return 0
        return len(records)

    def _mark_processed(
        self,
        session: CrawlSession,
        profile: SourceProfile,
        content: PageContent,
        page: int,
    ) -> None:
        session.last_processed_url = profile.base_url(content.url, self.settings.volatile_params)
        session.last_processed_page = page

    async def _advance(self, session: CrawlSession, strategy: TraversalStrategy, page: int) -> None:
        """Move to the next page: persist, wait, then hand over."""
        if self.quota is not None:
            used = self.quota.consume(session.source)
            remaining = self.quota.remaining(session.source)
            if remaining == 0:
                self._finish(
                    session,
                    SessionStatus.STOPPED,
                    EndReason.QUOTA_EXHAUSTED,
                    f"Daily page limit for {session.source} reached after {used} pages",
                )
                return

        session.transition(SessionStatus.PAGINATING)
        session.advance_to(page + 1 + session.listing_offset)
        if isinstance(strategy, NavigationStrategy):
            session.next_location = strategy.build_next_location(session)
        self._persist(session)
        self.events.progress(session.snapshot())

        interrupted = await self.rate_limiter.wait(
            session.source, stop_check=lambda: self._stop_requested(session)
        )
        if interrupted:
            raise _StopSignal()

        # navigation sessions stay paginating until the next context reports in
        if session.mode is TraversalMode.FETCH:
            session.transition(SessionStatus.COLLECTING)
            self._persist(session)

    def _read_expected_total(self, session: CrawlSession, profile: SourceProfile, content: PageContent) -> None:
        expected = profile.expected_total(content.html)
        if expected is None:
            return
        session.expected_total = expected
        session.total_pages = profile.total_pages(expected)
        self.events.log(f"Listing reports {expected} reviews over about {session.total_pages} pages")

    async def _discover_listing(self, session: CrawlSession, strategy: FetchStrategy) -> None:
        profile = get_profile(session.source)
        content = await strategy.discover_listing(session)
        link = profile.find_listing_link(content.html, content.url)
        if link is None:
            raise ExtractionEmpty("Review listing link not found on product page", url=content.url)
        session.listing_url = link
        session.current_page = max(session.current_page, profile.page_number(link))
        self._persist(session)
        self.events.log(f"Found review listing {link}")

    # ------------------------------------------------------------------
    # Stop handling and terminal states
    # ------------------------------------------------------------------

    def _stop_requested(self, session: CrawlSession) -> bool:
        stored = self.sessions.load(session.target_id)
        return (
            stored is None
            or stored.run_id != session.run_id
            or stored.status is SessionStatus.STOPPED
        )

    def _settle_stopped(self, session: CrawlSession) -> None:
        """Copy counts of a page stored during a stop onto the stopped record of the same run."""
        stored = self.sessions.load(session.target_id)
        if stored is None or stored.run_id != session.run_id:
            return
        stored.collected_count = session.collected_count
        stored.duplicates_dropped = session.duplicates_dropped
        stored.stale_dropped = session.stale_dropped
        stored.last_processed_url = session.last_processed_url
        stored.last_processed_page = session.last_processed_page
        stored.add_fingerprints(session.seen_fingerprints)
        self.sessions.save(stored)

    def _check_stop(self, session: CrawlSession) -> None:
        if session.is_live and self._stop_requested(session):
            raise _StopSignal()

    def _persist(self, session: CrawlSession) -> None:
        """Save a live session unless a stop was persisted in the meantime."""
        self._check_stop(session)
        self.sessions.save(session)

    def _fail(self, session: CrawlSession, error: ReviewCrawlerError) -> None:
        if isinstance(error, ExtractionEmpty):
            self.events.log(error.message, "warning")
            self._finish(session, SessionStatus.COMPLETED, EndReason.EXTRACTION_EMPTY, error.message)
            return

        if isinstance(error, ChallengeDetected):
            reason = EndReason.CHALLENGE
        elif isinstance(error, TransportError):
            reason = EndReason.TRANSPORT
        else:
            reason = EndReason.ERROR

        session.failed_page = session.current_page
        Metrics.get().increment(SESSIONS_FAILED)
        self.events.log(f"Page {session.current_page} failed: {error}", "error")
        if is_retryable(error):
            self.events.log(
                f"The site may accept requests again in about {get_retry_delay(error):.0f}s", "warning"
            )
        try:
            self._finish(session, SessionStatus.FAILED, reason, error.message)
        except StorageError as e:
            logger.error(f"Could not record failure of {session.target_id}: {e}")

    def _finish(
        self,
        session: CrawlSession,
        status: SessionStatus,
        reason: EndReason,
        message: str | None = None,
    ) -> bool:
        """
        Move the session to a terminal status and release the active pointer.

        Returns:
            False if a stop had already been persisted, in which case
            nothing is written
        """
        if self._stop_requested(session):
            logger.info(f"Session for {session.target_id} was stopped; keeping the stored state")
            return False

        session.transition(status, reason)
        session.next_location = None
        if message:
            session.error_message = message
        self.sessions.save(session)
        self.sessions.clear_active(session.target_id)

        if status is SessionStatus.COMPLETED:
            Metrics.get().increment(SESSIONS_COMPLETED)
            if reason in WATERMARK_ADVANCING:
                self.sessions.set_watermark(session.target_id, self._today().isoformat())
            self._verify_count(session)

        self.events.log(
            f"Session for {session.target_id} {status.value} ({reason.value}): "
            f"{session.collected_count} reviews collected"
        )
        self.events.complete(session.snapshot())
        return True

    def _verify_count(self, session: CrawlSession) -> None:
        if session.incremental_only or not session.expected_total:
            return
        floor = session.expected_total * (1 - self.settings.shortfall_tolerance)
        if session.collected_count < floor:
            self.events.log(
                f"Collected {session.collected_count} of {session.expected_total} reported reviews; "
                "the listing may hide some or the session ended early",
                "warning",
            )
