"""
Participation quality extraction from transcripts.

Finds the quality keyword spoken in a transcript. Keywords overlap
("good" is part of "very good"), so the levels are checked from the
lowest score upwards and a keyword is skipped when it only occurs as part
of a higher level's keyword.
"""

import logging
from typing import Optional, Sequence

from src.voice.commands import normalize
from src.voice.qualities import QUALITY_CATALOG, QualityLevel

logger = logging.getLogger(__name__)


def _shadowed(level: QualityLevel, text: str, catalog: Sequence[QualityLevel]) -> bool:
    """
    Check whether a level's keyword is covered by a present, higher keyword.

    Args:
        level: Level whose keyword matched
        text: Normalized transcript
        catalog: Full catalog

    Returns:
        True if a higher-scoring keyword containing this one is in the text
    """
    phrase = normalize(level.keyword)
    for other in catalog:
        if other.score <= level.score:
            continue
        other_phrase = normalize(other.keyword)
        if other_phrase != phrase and phrase in other_phrase and other_phrase in text:
            return True
    return False


def extract(
    transcript: str,
    catalog: Sequence[QualityLevel] = QUALITY_CATALOG
) -> Optional[QualityLevel]:
    """
    Extract the participation quality expressed in a transcript.

    Direct keyword checks run first, in ascending score order, with the
    superstring guard applied (a transcript containing "very good" resolves
    to Very Good, never Good). When no keyword fires, the catalog is scanned
    in its own order, testing each level's keyword and then its synonyms.

    Args:
        transcript: Finalized transcript text
        catalog: Quality levels to match against

    Returns:
        The matched QualityLevel, or None when the transcript names no quality
    """
    text = normalize(transcript)
    if not text:
        return None

    for level in sorted(catalog, key=lambda lvl: lvl.score):
        phrase = normalize(level.keyword)
        if phrase and phrase in text and not _shadowed(level, text, catalog):
            logger.debug(f"Found quality match: {level.keyword} (Score {level.score})")
            return level

    for level in catalog:
        if normalize(level.keyword) in text:
            logger.debug(f"Found quality match: {level.keyword} (Score {level.score})")
            return level
        for synonym in level.synonyms:
            synonym = normalize(synonym)
            if synonym and synonym in text:
                logger.debug(
                    f"Found quality match via '{synonym}': "
                    f"{level.keyword} (Score {level.score})"
                )
                return level

    logger.debug("No quality match found in transcript")
    return None
