"""
Record fingerprints and duplicate suppression.

A fingerprint identifies a review by what a reader would recognise it
by: the opening of its text, who wrote it and when. Two records with
equal fingerprints are treated as the same review no matter which page
or which run produced them.
"""

import hashlib

from review_crawler.crawler.models import CrawlSession, Review

BODY_PREFIX_CHARS = 100
FINGERPRINT_LENGTH = 32

_SEPARATOR = "\x1f"


def fingerprint(record: Review) -> str:
    """
    Compute the fingerprint of a record.

    Args:
        record: Extracted review

    Returns:
        Hex digest of (body prefix, author, date)
    """
    body = (record.body or "").strip()[:BODY_PREFIX_CHARS]
    author = (record.author or "").strip()
    date = (record.date or "").strip()

    key = _SEPARATOR.join((body, author, date))
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class DedupEngine:
    """
    Filters records already seen by a session.

    The seen set lives on the session so it is persisted with it and
    survives a context restart. Duplicates within a single page are
    dropped as well.

    Example:
        >>> engine = DedupEngine(session)
        >>> fresh, dropped = engine.filter(records)
    """

    def __init__(self, session: CrawlSession) -> None:
        self.session = session

    def filter(self, records: list[Review]) -> tuple[list[tuple[str, Review]], int]:
        """
        Split records into new ones and a duplicate count.

        Does not add anything to the seen set; the controller commits
        fingerprints only for the records it keeps.

        Returns:
            ((fingerprint, record) pairs in page order, duplicates dropped)
        """
        fresh: list[tuple[str, Review]] = []
        page_seen: set[str] = set()
        dropped = 0

        for record in records:
            fp = fingerprint(record)
            if fp in page_seen or self.session.has_seen(fp):
                dropped += 1
                continue
            page_seen.add(fp)
            fresh.append((fp, record))

        return fresh, dropped
