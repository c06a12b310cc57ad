"""
Bot-challenge page detection.

A challenge page is a verification interstitial served instead of the
listing. It is recognised by site-specific markup (Amazon's captcha
form) or by well-known phrases. Phrases are only consulted when the
page shows no review markup, so a review that happens to mention
"captcha" does not end the session.
"""

from bs4 import BeautifulSoup

from review_crawler.core.exceptions import ChallengeDetected
from review_crawler.crawler.models import PageContent
from review_crawler.crawler.sources import SourceProfile

# Lowercase needle, human-readable reason
CHALLENGE_PHRASES = [
    ("captcha", "Captcha required"),
    ("robot check", "Robot check"),
    ("verify you are a human", "Human verification required"),
    ("are you a human", "Human verification required"),
    ("unusual traffic", "Unusual traffic detected"),
    ("pardon our interruption", "Bot protection"),
    ("request has been blocked", "Request blocked"),
    ("ロボットではありません", "Robot check"),
    ("画像に表示されている文字", "Captcha required"),
]


class ChallengeDetector:
    """
    Decides whether a page is a verification interstitial.

    Example:
        >>> detector = ChallengeDetector()
        >>> detector.detect(content, AMAZON)
        'form[action="/errors/validateCaptcha"]'
    """

    def __init__(self, phrases: list[tuple[str, str]] | None = None) -> None:
        self.phrases = phrases if phrases is not None else CHALLENGE_PHRASES

    def detect(self, content: PageContent, profile: SourceProfile) -> str | None:
        """
        Returns:
            The matching marker (selector or reason), or None
        """
        if not content.html:
            return None

        soup = BeautifulSoup(content.html, "html.parser")

        for selector in profile.challenge_selectors:
            if soup.select_one(selector) is not None:
                return selector

        if soup.select_one(profile.review_selectors.container) is not None:
            return None

        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        haystack = " ".join(soup.get_text(" ").lower().split())

        for needle, reason in self.phrases:
            if needle in haystack:
                return reason

        return None

    def check(self, content: PageContent, profile: SourceProfile) -> None:
        """
        Raises:
            ChallengeDetected: If the page is a verification interstitial
        """
        marker = self.detect(content, profile)
        if marker is not None:
            raise ChallengeDetected(
                "Verification page detected. Open the site in a regular browser, "
                "complete the check, then start the session again.",
                url=content.url,
                marker=marker,
            )
