"""
Transcript dispatch.

Turns one finalized transcript into at most one outcome: a start command,
a stop command, a recorded participation event, or nothing. Only one
transcript is processed at a time; transcripts arriving while another is
in flight are dropped rather than queued.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from dotenv import load_dotenv

from src.voice.commands import (
    PARTICIPATION_TRIGGERS,
    START_PHRASES,
    STOP_PHRASES,
    contains_trigger,
    matches,
    tokenize,
)
from src.voice.name_resolver import (
    DEFAULT_WEIGHTS,
    NameDetectionMode,
    NameMatchWeights,
    resolve,
)
from src.voice.qualities import QUALITY_CATALOG, QualityLevel
from src.voice.quality_extractor import extract

load_dotenv()

logger = logging.getLogger(__name__)

# Fixed heuristic certainty attached to every voice-recorded event
PARTICIPATION_CONFIDENCE = float(os.getenv('PARTICIPATION_CONFIDENCE', '0.8'))
# Nominal speaking time credited per recorded participation
PARTICIPATION_DURATION_SECONDS = int(os.getenv('PARTICIPATION_DURATION_SECONDS', '60'))


class TrackingStateProvider(Protocol):
    """Tracking flags and mutators owned by the participation store."""

    @property
    def is_tracking(self) -> bool: ...

    @property
    def current_section_id(self) -> Optional[str]: ...

    @property
    def name_detection_mode(self) -> NameDetectionMode: ...

    def request_start(self) -> bool: ...

    def request_stop(self) -> None: ...


class RosterProvider(Protocol):
    """Supplies the current roster snapshot."""

    def roster(self) -> Sequence[Any]: ...


class ParticipationSink(Protocol):
    """Receives scored participation events."""

    async def record(
        self,
        student: Any,
        duration_seconds: int,
        quality: QualityLevel,
        matched_keywords: List[str],
        confidence: float
    ) -> Any: ...


class NotificationSink(Protocol):
    """Fire-and-forget user-visible messages."""

    def notify(self, message: str, level: str = 'info', key: Optional[str] = None) -> bool: ...


class SignalKind(str, Enum):
    """Outcome of dispatching one transcript."""

    START_COMMAND = "start_command"
    STOP_COMMAND = "stop_command"
    PARTICIPATION_RECORDED = "participation_recorded"
    IGNORED = "ignored"


@dataclass
class ParticipationEvent:
    """
    A scored participation detected in a transcript.

    Attributes:
        student: Roster entry the transcript referred to
        quality: Quality level spoken in the same transcript
        matched_keywords: Words of the transcript
        confidence: Heuristic certainty (constant, not a probability)
    """

    student: Any
    quality: QualityLevel
    matched_keywords: List[str] = field(default_factory=list)
    confidence: float = PARTICIPATION_CONFIDENCE


@dataclass
class DispatchResult:
    """Signal emitted for a transcript, with the reason when ignored."""

    kind: SignalKind
    event: Optional[ParticipationEvent] = None
    reason: str = ""

    @classmethod
    def ignored(cls, reason: str) -> 'DispatchResult':
        return cls(kind=SignalKind.IGNORED, reason=reason)


class TranscriptDispatcher:
    """
    Orchestrates command matching, name resolution and quality extraction.

    The roster and quality catalog are read fresh on every dispatch and
    never mutated. A name without a quality (or a quality without a name)
    in the same transcript is never scored.

    Attributes:
        tracking: Tracking state provider (is_tracking, section, mutators)
        roster_provider: Source of the current roster
        sink: Participation sink called once per qualifying transcript
        notifier: Notification sink for user-visible messages
    """

    def __init__(
        self,
        tracking: TrackingStateProvider,
        roster_provider: RosterProvider,
        sink: ParticipationSink,
        notifier: Optional[NotificationSink] = None,
        catalog: Sequence[QualityLevel] = QUALITY_CATALOG,
        start_phrases: Sequence[str] = START_PHRASES,
        stop_phrases: Sequence[str] = STOP_PHRASES,
        triggers: Sequence[str] = PARTICIPATION_TRIGGERS,
        weights: NameMatchWeights = DEFAULT_WEIGHTS,
        confidence: float = PARTICIPATION_CONFIDENCE,
        duration_seconds: int = PARTICIPATION_DURATION_SECONDS
    ):
        self.tracking = tracking
        self.roster_provider = roster_provider
        self.sink = sink
        self.notifier = notifier
        self.catalog: Tuple[QualityLevel, ...] = tuple(catalog)
        self.start_phrases = tuple(start_phrases)
        self.stop_phrases = tuple(stop_phrases)
        self.triggers = tuple(triggers)
        self.weights = weights
        self.confidence = confidence
        self.duration_seconds = duration_seconds
        self._processing = False

    @property
    def is_processing(self) -> bool:
        """Whether a transcript is currently being dispatched."""
        return self._processing

    def _notify(self, message: str, level: str = 'info', key: Optional[str] = None) -> None:
        if self.notifier is not None:
            self.notifier.notify(message, level=level, key=key)

    async def dispatch(self, transcript: str) -> DispatchResult:
        """
        Process one finalized transcript.

        Args:
            transcript: Finalized, lower-cased utterance

        Returns:
            DispatchResult describing the emitted signal
        """
        if self._processing:
            logger.debug("Already processing a transcript, dropping this one")
            return DispatchResult.ignored('busy')

        self._processing = True
        try:
            return await self._dispatch(transcript)
        finally:
            self._processing = False

    async def _dispatch(self, transcript: str) -> DispatchResult:
        logger.info(f"Processing voice transcript: '{transcript}'")

        if matches(transcript, self.start_phrases):
            logger.info("Start tracking command detected")
            if not self.tracking.current_section_id:
                self._notify('Please select a section first', level='error', key='no-section')
                return DispatchResult.ignored('no_section')
            self.tracking.request_start()
            return DispatchResult(kind=SignalKind.START_COMMAND)

        if matches(transcript, self.stop_phrases):
            logger.info("Stop tracking command detected")
            self.tracking.request_stop()
            return DispatchResult(kind=SignalKind.STOP_COMMAND)

        if not self.tracking.is_tracking or not self.tracking.current_section_id:
            logger.debug("Not processing participation: tracking is off or no section selected")
            return DispatchResult.ignored('not_tracking')

        if not contains_trigger(transcript, self.triggers):
            logger.debug("No participation trigger found in transcript")
            return DispatchResult.ignored('no_trigger')

        roster = list(self.roster_provider.roster())
        student = resolve(transcript, roster, self.tracking.name_detection_mode, self.weights)
        if student is None:
            logger.debug("No student name found in transcript")
            return DispatchResult.ignored('no_name')

        quality = extract(transcript, self.catalog)
        if quality is None:
            logger.info(
                f"Student {student.first_name} {student.last_name} found "
                f"but no quality in this transcript, ignoring"
            )
            self._notify(
                f"Student {student.last_name}, {student.first_name} detected "
                f"but no quality specified",
                level='info',
            )
            return DispatchResult.ignored('no_quality')

        event = ParticipationEvent(
            student=student,
            quality=quality,
            matched_keywords=tokenize(transcript),
            confidence=self.confidence,
        )

        try:
            await self.sink.record(
                student,
                self.duration_seconds,
                quality,
                list(event.matched_keywords),
                event.confidence,
            )
        except Exception as e:
            logger.error(f"Error recording participation: {e}", exc_info=True)
            self._notify('Failed to record participation', level='error', key='record-failed')
            return DispatchResult.ignored('record_failed')

        logger.info(
            f"Recorded {quality.keyword} (Score: {quality.score}) participation "
            f"for {student.first_name} {student.last_name}"
        )
        return DispatchResult(kind=SignalKind.PARTICIPATION_RECORDED, event=event)
