"""
Extraction module for the review crawler.

Turns listing pages into Review records.
"""

from review_crawler.extraction.review_extractor import (
    RecordExtractor,
    SelectorExtractor,
)

__all__ = [
    "RecordExtractor",
    "SelectorExtractor",
]
