"""
Student name resolution from transcripts.

Scores every roster candidate against the words of a transcript and returns
the best one, provided it clears a minimum-confidence threshold. The weights
were tuned by hand against real classroom speech and are exposed as
configuration rather than constants baked into the scoring code.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence, Set, Tuple, TypeVar

from dotenv import load_dotenv

from src.voice.commands import normalize

load_dotenv()

logger = logging.getLogger(__name__)


class Candidate(Protocol):
    """Read view of a roster entry."""

    first_name: str
    last_name: str


C = TypeVar('C', bound=Candidate)


class NameDetectionMode(str, Enum):
    """Which parts of a student's name are listened for."""

    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    BOTH = "both"


@dataclass
class NameMatchWeights:
    """
    Scoring weights for name resolution.

    Attributes:
        exact_last: Last name present as a whole word
        partial_last: Last name and a word contain one another
        exact_first: First name present as a whole word
        partial_first: First name and a word contain one another
        full_name: "first last" or "last first" present verbatim (both mode)
        min_partial_length: Both sides of a partial match must be longer than this
        threshold: Minimum score for a candidate to be reported
    """

    exact_last: int = int(os.getenv('NAME_MATCH_EXACT_LAST', '5'))
    partial_last: int = int(os.getenv('NAME_MATCH_PARTIAL_LAST', '2'))
    exact_first: int = int(os.getenv('NAME_MATCH_EXACT_FIRST', '3'))
    partial_first: int = int(os.getenv('NAME_MATCH_PARTIAL_FIRST', '1'))
    full_name: int = int(os.getenv('NAME_MATCH_FULL_NAME', '8'))
    min_partial_length: int = int(os.getenv('NAME_MATCH_MIN_PARTIAL_LENGTH', '3'))
    threshold: int = int(os.getenv('NAME_MATCH_THRESHOLD', '3'))


DEFAULT_WEIGHTS = NameMatchWeights()


def _partial_match(name: str, words: Iterable[str], min_length: int) -> bool:
    if len(name) <= min_length:
        return False
    return any(
        len(word) > min_length and (name in word or word in name)
        for word in words
    )


def _name_part_score(
    name: str,
    words: Sequence[str],
    word_set: Set[str],
    exact: int,
    partial: int,
    min_length: int
) -> int:
    if not name:
        return 0
    if name in word_set:
        return exact
    if _partial_match(name, words, min_length):
        return partial
    return 0


def score_candidate(
    transcript: str,
    candidate: Candidate,
    mode: NameDetectionMode = NameDetectionMode.BOTH,
    weights: NameMatchWeights = DEFAULT_WEIGHTS
) -> int:
    """
    Score a single candidate against a transcript.

    Args:
        transcript: Finalized transcript text
        candidate: Roster entry with first_name / last_name
        mode: Name detection mode
        weights: Scoring weights

    Returns:
        Non-negative integer score
    """
    text = normalize(transcript)
    words = text.split(' ') if text else []
    word_set = set(words)
    first = normalize(candidate.first_name)
    last = normalize(candidate.last_name)

    score = _name_part_score(
        last, words, word_set,
        weights.exact_last, weights.partial_last, weights.min_partial_length
    )

    mode = NameDetectionMode(mode)
    if mode in (NameDetectionMode.FIRST_NAME, NameDetectionMode.BOTH):
        score += _name_part_score(
            first, words, word_set,
            weights.exact_first, weights.partial_first, weights.min_partial_length
        )

    if mode == NameDetectionMode.BOTH and first and last:
        if f"{first} {last}" in text or f"{last} {first}" in text:
            score += weights.full_name

    return score


def resolve_with_score(
    transcript: str,
    roster: Sequence[C],
    mode: NameDetectionMode = NameDetectionMode.BOTH,
    weights: NameMatchWeights = DEFAULT_WEIGHTS
) -> Tuple[Optional[C], int]:
    """
    Find the best-scoring candidate and its score.

    Ties keep the candidate that comes first in roster order.

    Returns:
        Tuple of (candidate or None, best score). The candidate is None when
        the best score is below the configured threshold.
    """
    best: Optional[C] = None
    best_score = 0

    for candidate in roster:
        score = score_candidate(transcript, candidate, mode, weights)
        if score:
            logger.debug(
                f"Candidate {candidate.first_name} {candidate.last_name} scored {score}"
            )
        if score > best_score:
            best = candidate
            best_score = score

    if best is not None and best_score >= weights.threshold:
        logger.info(
            f"Best student match: {best.first_name} {best.last_name} "
            f"with score {best_score}"
        )
        return best, best_score

    logger.debug(f"No student match above threshold (best score {best_score})")
    return None, best_score


def resolve(
    transcript: str,
    roster: Sequence[C],
    mode: NameDetectionMode = NameDetectionMode.BOTH,
    weights: NameMatchWeights = DEFAULT_WEIGHTS
) -> Optional[C]:
    """
    Resolve the student a transcript refers to.

    Args:
        transcript: Finalized transcript text
        roster: Candidates to consider, in roster order
        mode: Name detection mode
        weights: Scoring weights

    Returns:
        The best candidate, or None when nobody reaches the threshold
    """
    candidate, _score = resolve_with_score(transcript, roster, mode, weights)
    return candidate
