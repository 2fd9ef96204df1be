"""
Classroom tracker wiring.

Connects the participation store, the transcript dispatcher and the
recognition session manager: whenever the store's tracking flag flips,
recognition is started or stopped accordingly.
"""

import logging
from typing import Any, Callable, Dict, Optional

from src.tracking.notifications import NotificationCenter
from src.tracking.store import ParticipationStore
from src.voice.dispatcher import DispatchResult, TranscriptDispatcher
from src.voice.engines import SpeechEngine
from src.voice.session import RecognitionSessionManager, SessionTimings

logger = logging.getLogger(__name__)


class ClassroomTracker:
    """
    One tracking setup: store, dispatcher and recognition session.

    Attributes:
        notifier: Shared notification center
        store: Participation store (roster, tracking state, sink)
        dispatcher: Transcript dispatcher
        session: Recognition session manager
    """

    def __init__(
        self,
        engine_factory: Callable[[], SpeechEngine],
        store: Optional[ParticipationStore] = None,
        notifier: Optional[NotificationCenter] = None,
        timings: Optional[SessionTimings] = None
    ):
        self.notifier = notifier or (store.notifier if store else NotificationCenter())
        self.store = store or ParticipationStore(notifier=self.notifier)
        self.dispatcher = TranscriptDispatcher(
            tracking=self.store,
            roster_provider=self.store,
            sink=self.store,
            notifier=self.notifier,
        )
        self.session = RecognitionSessionManager(
            engine_factory=engine_factory,
            dispatcher=self.dispatcher,
            notifier=self.notifier,
            timings=timings,
        )
        self._unsubscribe = self.store.subscribe(self._on_tracking_changed)
        logger.info("ClassroomTracker initialized")

    def _on_tracking_changed(self, tracking: bool) -> None:
        if tracking:
            self.session.start()
        else:
            self.session.stop()

    def start_tracking(self) -> bool:
        """
        Manual start from the user.

        A manual start also clears a recorded microphone permission denial,
        since the user is expected to have re-granted access.

        Returns:
            True if tracking is active afterwards
        """
        if self.session.permission_denied:
            self.session.reset_permission()
            if self.store.is_tracking:
                return self.session.start()
        return self.store.request_start()

    def stop_tracking(self) -> None:
        self.store.request_stop()

    async def submit_transcript(self, transcript: str) -> DispatchResult:
        """
        Dispatch a finalized transcript received outside the session manager.

        Args:
            transcript: Finalized utterance

        Returns:
            Dispatch result
        """
        return await self.dispatcher.dispatch(transcript.lower())

    def status(self) -> Dict[str, Any]:
        return {
            'is_tracking': self.store.is_tracking,
            'current_section_id': self.store.current_section_id,
            'session_state': self.session.state.value,
            'permission_denied': self.session.permission_denied,
            'name_detection_mode': self.store.name_detection_mode.value,
            'student_count': len(self.store.roster()),
            'record_count': len(self.store.records),
        }

    def close(self) -> None:
        """Detach from the store and stop recognition."""
        self._unsubscribe()
        self.session.stop()
