"""
Participation quality catalog.

Each quality level pairs a spoken keyword with a numeric score and a list
of recognized synonyms. The built-in levels recognize only their own
keyword, so "great question" scores nothing; custom catalogs may add
synonyms. The catalog is ordered by increasing score, and that order
drives both keyword precedence and the fallback synonym scan.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class QualityLevel:
    """
    A discrete participation score category.

    Attributes:
        keyword: Display keyword, also matched case-insensitively
        score: Points awarded (1 = lowest, 5 = highest)
        synonyms: Additional spoken phrases mapping to this level
        description: Short human-readable explanation
    """

    keyword: str
    score: int
    synonyms: Tuple[str, ...] = field(default_factory=tuple)
    description: str = ""

    def __post_init__(self):
        if self.score < 1:
            raise ValueError(f"Quality score must be positive, got {self.score}")

    def to_dict(self) -> Dict[str, object]:
        """Convert to a JSON-friendly dictionary."""
        return {
            'keyword': self.keyword,
            'score': self.score,
            'synonyms': list(self.synonyms),
            'description': self.description,
        }


NOT_QUITE = QualityLevel(
    keyword="Not Quite",
    score=1,
    synonyms=("not quite",),
    description="Attempted but incorrect response",
)
CLOSE = QualityLevel(
    keyword="Close",
    score=2,
    synonyms=("close",),
    description="Partially correct response",
)
GOOD = QualityLevel(
    keyword="Good",
    score=3,
    synonyms=("good",),
    description="Solid contribution",
)
VERY_GOOD = QualityLevel(
    keyword="Very Good",
    score=4,
    synonyms=("very good",),
    description="High quality response",
)
EXCELLENT = QualityLevel(
    keyword="Excellent",
    score=5,
    synonyms=("excellent",),
    description="Outstanding contribution",
)

# Increasing quality. Do not reorder.
QUALITY_CATALOG: Tuple[QualityLevel, ...] = (
    NOT_QUITE,
    CLOSE,
    GOOD,
    VERY_GOOD,
    EXCELLENT,
)


def find_by_keyword(
    keyword: str,
    catalog: Tuple[QualityLevel, ...] = QUALITY_CATALOG
) -> Optional[QualityLevel]:
    """
    Look up a quality level by its keyword.

    Args:
        keyword: Keyword to look up (case-insensitive)
        catalog: Catalog to search

    Returns:
        Matching QualityLevel or None
    """
    wanted = keyword.strip().lower()
    for level in catalog:
        if level.keyword.lower() == wanted:
            return level
    return None


def find_by_score(
    score: int,
    catalog: Tuple[QualityLevel, ...] = QUALITY_CATALOG
) -> Optional[QualityLevel]:
    """Look up a quality level by its score."""
    for level in catalog:
        if level.score == score:
            return level
    return None
