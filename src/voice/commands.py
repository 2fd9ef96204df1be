"""
Voice command phrase matching.

Decides whether a finalized transcript carries one of the canonical
start/stop phrases, tolerating speech-to-text substitutions on a single
word while still requiring the phrase words to appear in order.
"""

import logging
import re
from typing import Iterable, List, Tuple

logger = logging.getLogger(__name__)


START_PHRASES: Tuple[str, ...] = (
    "start recording",
    "begin recording",
    "start tracking",
    "begin tracking",
    "start monitoring",
    "begin monitoring",
    "start session",
    "begin session",
    "start class",
    "begin class",
    "start now",
    "let's start",
    "let's begin",
)

STOP_PHRASES: Tuple[str, ...] = (
    "stop recording",
    "end recording",
    "stop tracking",
    "end tracking",
    "stop monitoring",
    "end monitoring",
    "stop session",
    "end session",
    "stop class",
    "end class",
    "stop now",
    "that's all",
    "we're done",
)

PARTICIPATION_TRIGGERS: Tuple[str, ...] = (
    "participates",
    "answers",
    "responds",
    "contributes",
    "shares",
    "asks",
    "comments",
    "explains",
    "discusses",
    "presents",
    "answered",
    "responded",
    "contributed",
    "shared",
    "asked",
    "commented",
    "explained",
    "discussed",
    "presented",
    "said",
    "says",
    "speaking",
    "spoke",
    "answer",
    "response",
    "question",
    "point",
    "participation",
    "contribution",
)

# Minimum number of phrase words that must appear, in order, for a fuzzy match
MIN_ORDERED_WORDS = 2

_APOSTROPHES = re.compile(r"['’]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """
    Normalize text for phrase comparison.

    Lower-cases, trims, drops apostrophes and collapses runs of whitespace,
    so "Let's  Start" and "lets start" compare equal.

    Args:
        text: Raw transcript or phrase

    Returns:
        Normalized text
    """
    text = _APOSTROPHES.sub('', text.lower().strip())
    return _WHITESPACE.sub(' ', text)


def tokenize(text: str) -> List[str]:
    """Split normalized text into words."""
    normalized = normalize(text)
    return normalized.split(' ') if normalized else []


def _ordered_word_match(words: List[str], phrase_words: List[str]) -> bool:
    """
    Check that enough phrase words occur in the transcript in order.

    Each phrase word is searched for after the position of the previous hit;
    a transcript word matches when it contains the phrase word. Phrase words
    that are not found are skipped without resetting the position.
    """
    matched = 0
    last_index = -1
    for phrase_word in phrase_words:
        for index in range(last_index + 1, len(words)):
            if phrase_word in words[index]:
                matched += 1
                last_index = index
                break
    return matched >= MIN_ORDERED_WORDS


def matches(transcript: str, phrases: Iterable[str]) -> bool:
    """
    Decide whether a transcript matches any of the given command phrases.

    Checks are tried in order and the first success wins:

    1. exact match of the normalized transcript against a phrase
    2. the phrase occurs as a substring of the transcript
    3. for phrases of two or more words, at least two of the phrase words
       occur in the transcript in the same relative order

    Args:
        transcript: Finalized transcript text
        phrases: Canonical command phrases

    Returns:
        True if any phrase matches
    """
    normalized = normalize(transcript)
    candidates = [normalize(p) for p in phrases]
    candidates = [p for p in candidates if p]

    if not normalized or not candidates:
        return False

    if normalized in candidates:
        logger.debug(f"Exact voice command match in: '{normalized}'")
        return True

    for phrase in candidates:
        if phrase in normalized:
            logger.debug(f"Substring voice command match '{phrase}' in: '{normalized}'")
            return True

    words = normalized.split(' ')
    for phrase in candidates:
        phrase_words = phrase.split(' ')
        if len(phrase_words) < MIN_ORDERED_WORDS:
            continue
        if _ordered_word_match(words, phrase_words):
            logger.debug(f"Word-by-word match for command '{phrase}' in: '{normalized}'")
            return True

    return False


def contains_trigger(
    transcript: str,
    triggers: Iterable[str] = PARTICIPATION_TRIGGERS
) -> bool:
    """
    Check whether the transcript carries a participation trigger word.

    Args:
        transcript: Finalized transcript text
        triggers: Trigger words to look for (substring match)

    Returns:
        True if any trigger is present
    """
    normalized = normalize(transcript)
    for trigger in triggers:
        trigger = normalize(trigger)
        if trigger and trigger in normalized:
            logger.debug(f"Participation trigger found: '{trigger}'")
            return True
    return False
