"""
Repository classes for data access.

Provides a typed interface for the reviews table.
"""

import json

from review_crawler.crawler.models import Review
from review_crawler.storage.database import Database
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)


class ReviewRepository:
    """
    Repository for collected reviews.

    Rows are unique per (target_id, fingerprint); inserting the same
    record twice is a no-op.

    Example:
        >>> repo = ReviewRepository(database)
        >>> repo.insert_many([(fp, review)])
        1
        >>> repo.count_for_target("B0ABC12345")
        1
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def insert_many(self, items: list[tuple[str, Review]]) -> int:
        """
        Insert fingerprinted reviews.

        Args:
            items: (fingerprint, review) pairs

        Returns:
            Number of rows actually inserted
        """
        if not items:
            return 0

        rows = [
            (
                review.target_id or "",
                review.source or "generic",
                fingerprint,
                review.title,
                review.body,
                review.author,
                review.date,
                review.rating,
                review.review_id,
                review.url,
                review.page,
                review.collected_at,
                json.dumps(review.extra, ensure_ascii=False) if review.extra else None,
            )
            for fingerprint, review in items
        ]

        inserted = self.db.executemany(
            """
            INSERT OR IGNORE INTO reviews (
                target_id, source, fingerprint, title, body, author, date,
                rating, review_id, url, page, collected_at, extra
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        logger.debug(f"Inserted {inserted}/{len(rows)} reviews")
        return inserted

    def list_for_target(self, target_id: str, limit: int | None = None) -> list[Review]:
        """Reviews of a target in collection order."""
        sql = "SELECT * FROM reviews WHERE target_id = ? ORDER BY id"
        params: tuple = (target_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (target_id, limit)
        return [self._from_row(row) for row in self.db.fetch_all(sql, params)]

    def count_for_target(self, target_id: str) -> int:
        row = self.db.fetch_one(
            "SELECT COUNT(*) AS n FROM reviews WHERE target_id = ?", (target_id,)
        )
        return row["n"] if row else 0

    def count_by_target(self) -> dict[str, int]:
        rows = self.db.fetch_all(
            "SELECT target_id, COUNT(*) AS n FROM reviews GROUP BY target_id ORDER BY target_id"
        )
        return {row["target_id"]: row["n"] for row in rows}

    @staticmethod
    def _from_row(row: dict) -> Review:
        return Review(
            body=row["body"] or "",
            title=row["title"] or "",
            author=row["author"] or "",
            date=row["date"],
            rating=row["rating"],
            review_id=row["review_id"],
            url=row["url"],
            target_id=row["target_id"],
            source=row["source"],
            page=row["page"],
            collected_at=row["collected_at"],
            extra=json.loads(row["extra"]) if row["extra"] else {},
        )
