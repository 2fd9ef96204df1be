"""
Recognition session lifecycle.

Keeps a continuous-listening speech session alive for as long as tracking
is active. Engines in continuous mode tend to stop accepting input after a
single result, end on their own after silences, and fail transiently on
network hiccups; the manager restarts them, backs off on repeated errors
and stops for good when microphone permission is refused.

State changes go through one transition table (see transition()); the
manager performs the side effects. All timers are asyncio TimerHandles
owned by the manager and cancelled on stop.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from dotenv import load_dotenv

from src.voice.dispatcher import DispatchResult, NotificationSink, TranscriptDispatcher
from src.voice.engines import EngineErrorKind, SpeechEngine

load_dotenv()

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of the recognition session."""

    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    PROCESSING = "processing"
    ERROR = "error"
    PERMISSION_DENIED = "permission_denied"


class SessionEvent(str, Enum):
    """Inputs to the session state machine."""

    START = "start"
    ENGINE_STARTED = "engine_started"
    FINAL_RESULT = "final_result"
    DISPATCHED = "dispatched"
    ENGINE_ERROR = "engine_error"
    PERMISSION_ERROR = "permission_error"
    STOP = "stop"
    PERMISSION_RESET = "permission_reset"


_S = SessionState
_E = SessionEvent

TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], SessionState] = {
    (_S.IDLE, _E.START): _S.STARTING,
    (_S.IDLE, _E.STOP): _S.IDLE,
    (_S.IDLE, _E.PERMISSION_ERROR): _S.PERMISSION_DENIED,

    (_S.STARTING, _E.START): _S.STARTING,
    (_S.STARTING, _E.ENGINE_STARTED): _S.LISTENING,
    (_S.STARTING, _E.ENGINE_ERROR): _S.ERROR,
    (_S.STARTING, _E.PERMISSION_ERROR): _S.PERMISSION_DENIED,
    (_S.STARTING, _E.STOP): _S.IDLE,

    (_S.LISTENING, _E.START): _S.STARTING,
    (_S.LISTENING, _E.FINAL_RESULT): _S.PROCESSING,
    (_S.LISTENING, _E.ENGINE_ERROR): _S.ERROR,
    (_S.LISTENING, _E.PERMISSION_ERROR): _S.PERMISSION_DENIED,
    (_S.LISTENING, _E.STOP): _S.IDLE,

    (_S.PROCESSING, _E.START): _S.STARTING,
    (_S.PROCESSING, _E.DISPATCHED): _S.LISTENING,
    (_S.PROCESSING, _E.ENGINE_ERROR): _S.ERROR,
    (_S.PROCESSING, _E.PERMISSION_ERROR): _S.PERMISSION_DENIED,
    (_S.PROCESSING, _E.STOP): _S.IDLE,

    (_S.ERROR, _E.START): _S.STARTING,
    (_S.ERROR, _E.ENGINE_ERROR): _S.ERROR,
    (_S.ERROR, _E.PERMISSION_ERROR): _S.PERMISSION_DENIED,
    (_S.ERROR, _E.STOP): _S.IDLE,

    (_S.PERMISSION_DENIED, _E.PERMISSION_RESET): _S.IDLE,
}


def transition(state: SessionState, event: SessionEvent) -> Optional[SessionState]:
    """
    Compute the next session state.

    Args:
        state: Current state
        event: Incoming event

    Returns:
        The next state, or None when the event does not apply in this state
    """
    return TRANSITIONS.get((state, event))


@dataclass
class SessionTimings:
    """
    Delays and limits for restarts and retries, in seconds.

    Attributes:
        restart_after_result: Delay before restarting after a dispatched result
        network_retry_delay: Retry delay after a network error
        no_speech_retry_delay: Retry delay after a no-speech timeout
        backoff_base: Base delay for other errors, scaled by attempt / 3
        backoff_cap: Upper bound of the backoff delay
        max_retry_attempts: Backoff retries before the failure notification
        final_retry_delay: Delay of the last retry after the notification
        watchdog_interval: Health check period (None or 0 disables it)
    """

    restart_after_result: float = float(os.getenv('RESTART_AFTER_RESULT_DELAY', '0.15'))
    network_retry_delay: float = float(os.getenv('NETWORK_RETRY_DELAY', '0.3'))
    no_speech_retry_delay: float = float(os.getenv('NO_SPEECH_RETRY_DELAY', '0.1'))
    backoff_base: float = float(os.getenv('RECONNECT_DELAY', '1.0'))
    backoff_cap: float = float(os.getenv('RECONNECT_DELAY_CAP', '0.3'))
    max_retry_attempts: int = int(os.getenv('MAX_RECONNECT_ATTEMPTS', '5'))
    final_retry_delay: float = float(os.getenv('FINAL_RETRY_DELAY', '2.0'))
    watchdog_interval: Optional[float] = float(os.getenv('WATCHDOG_INTERVAL', '3.0'))

    def backoff_delay(self, attempt: int) -> float:
        """Delay before backoff retry number `attempt` (1-based)."""
        return min(self.backoff_cap, self.backoff_base * attempt / 3)


class RecognitionSessionManager:
    """
    Owns the speech engine and keeps recognition running while tracking.

    Only one engine instance exists at a time: every (re)start tears the
    previous one down first, and callbacks from an engine that is no longer
    current are ignored.

    Attributes:
        dispatcher: Transcript dispatcher fed with finalized results
        notifier: Notification sink for user-visible failures
        timings: Retry and restart timings
        state: Current SessionState
        last_result: Result of the most recent dispatch
    """

    def __init__(
        self,
        engine_factory: Callable[[], SpeechEngine],
        dispatcher: TranscriptDispatcher,
        notifier: Optional[NotificationSink] = None,
        timings: Optional[SessionTimings] = None
    ):
        self._engine_factory = engine_factory
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.timings = timings or SessionTimings()
        self.state = SessionState.IDLE
        self.last_result: Optional[DispatchResult] = None
        self.retry_attempts = 0

        self._engine: Optional[SpeechEngine] = None
        self._desired = False
        self._permission_denied = False
        self._permission_notified = False
        self._state_since = 0.0
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._watchdog_handle: Optional[asyncio.TimerHandle] = None
        self._dispatch_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def engine(self) -> Optional[SpeechEngine]:
        """The live engine instance, if any."""
        return self._engine

    @property
    def is_tracking_desired(self) -> bool:
        return self._desired

    @property
    def permission_denied(self) -> bool:
        return self._permission_denied

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return asyncio.get_running_loop()

    def _apply(self, event: SessionEvent) -> bool:
        new_state = transition(self.state, event)
        if new_state is None:
            logger.debug(f"Event {event.value} ignored in state {self.state.value}")
            return False
        if new_state != self.state:
            logger.info(
                f"Recognition session {self.state.value} -> {new_state.value} "
                f"({event.value})"
            )
            self._state_since = time.monotonic()
        self.state = new_state
        return True

    def _notify(self, message: str, level: str = 'error', key: Optional[str] = None) -> None:
        if self.notifier is not None:
            self.notifier.notify(message, level=level, key=key)

    # ------------------------------------------------------------------
    # Public control
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Begin tracking: start listening and keep the session alive.

        Returns:
            False if microphone permission is recorded as denied
        """
        self._desired = True
        if self._permission_denied:
            logger.warning("Not starting recognition: microphone permission denied")
            return False
        self._schedule_watchdog()
        self._launch()
        return True

    def stop(self) -> None:
        """Stop tracking, tear the engine down and cancel every pending timer."""
        self._desired = False
        self._cancel_timers()
        self._teardown_engine()
        self._apply(SessionEvent.STOP)
        logger.info("Recognition stopped")

    def restart(self) -> bool:
        """
        Force a fresh engine if tracking is desired and permitted.

        Returns:
            True if a restart was issued
        """
        if not self._desired or self._permission_denied:
            return False
        self._launch()
        return True

    def reset_permission(self) -> None:
        """Clear a recorded permission denial, e.g. after the user re-grants access."""
        self._permission_denied = False
        self._permission_notified = False
        self.retry_attempts = 0
        self._apply(SessionEvent.PERMISSION_RESET)
        logger.info("Microphone permission reset")

    def report_permission_denied(self) -> None:
        """Record a permission denial detected outside the engine."""
        self._handle_permission_denied()

    def handle_visibility_change(self, visible: bool) -> None:
        """
        React to the host page becoming visible or hidden.

        Args:
            visible: True when the page is in the foreground
        """
        if not visible:
            return
        if self._desired and not self._permission_denied and self.state != SessionState.LISTENING:
            logger.info("Page became visible, ensuring recognition is active")
            self._launch()

    # ------------------------------------------------------------------
    # Engine ownership
    # ------------------------------------------------------------------

    def _launch(self) -> None:
        self._cancel_handle('_retry_handle')
        self._cancel_handle('_restart_handle')
        if not self._apply(SessionEvent.START):
            return

        self._teardown_engine()
        engine = self._engine_factory()
        self._engine = engine
        engine.bind(
            on_start=lambda: self._on_engine_start(engine),
            on_result=lambda text, is_final: self._on_engine_result(engine, text, is_final),
            on_error=lambda kind: self._on_engine_error(engine, kind),
            on_end=lambda: self._on_engine_end(engine),
        )

        try:
            logger.info("Starting recognition...")
            engine.start()
        except Exception as e:
            logger.error(f"Error starting recognition: {e}", exc_info=True)
            self._handle_error(EngineErrorKind.OTHER)

    def _teardown_engine(self) -> None:
        engine, self._engine = self._engine, None
        if engine is None:
            return
        engine.unbind()
        try:
            engine.stop()
        except Exception as e:
            logger.warning(f"Error stopping existing recognition: {e}")

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def _on_engine_start(self, engine: SpeechEngine) -> None:
        if engine is not self._engine:
            return
        if self._apply(SessionEvent.ENGINE_STARTED):
            self.retry_attempts = 0
            logger.info("Recognition started successfully")

    def _on_engine_result(self, engine: SpeechEngine, transcript: str, is_final: bool) -> None:
        if engine is not self._engine:
            return
        if not is_final:
            logger.debug(f"Interim transcript ignored: '{transcript}'")
            return
        if not self._apply(SessionEvent.FINAL_RESULT):
            logger.debug("Skipping transcript, session is not listening")
            return
        self._dispatch_task = self._get_loop().create_task(
            self._process(transcript.lower())
        )

    def _on_engine_error(self, engine: SpeechEngine, kind: EngineErrorKind) -> None:
        if engine is not self._engine:
            return
        kind = EngineErrorKind.from_code(kind)
        logger.error(f"Speech recognition error: {kind.value}")
        if kind == EngineErrorKind.PERMISSION_DENIED:
            self._handle_permission_denied()
        else:
            self._handle_error(kind)

    def _on_engine_end(self, engine: SpeechEngine) -> None:
        if engine is not self._engine:
            return
        logger.info("Recognition ended")
        engine.unbind()
        self._engine = None

        if self._permission_denied:
            return
        if not self._desired:
            self._apply(SessionEvent.STOP)
            return
        if self._retry_handle is not None:
            logger.debug("Retry already scheduled, leaving restart to it")
            return
        logger.info("Restarting recognition after end event")
        self._launch()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _process(self, transcript: str) -> None:
        try:
            self.last_result = await self.dispatcher.dispatch(transcript)
            logger.debug(f"Dispatch result: {self.last_result.kind.value}")
        except Exception as e:
            logger.error(f"Error processing transcript: {e}", exc_info=True)
        finally:
            self._dispatch_task = None
            if self._apply(SessionEvent.DISPATCHED) and self._desired:
                self._restart_handle = self._get_loop().call_later(
                    self.timings.restart_after_result, self._restart_after_result
                )

    def _restart_after_result(self) -> None:
        self._restart_handle = None
        if self._desired and not self._permission_denied:
            logger.debug("Restarting recognition after processing")
            self._launch()

    # ------------------------------------------------------------------
    # Error recovery
    # ------------------------------------------------------------------

    def _handle_permission_denied(self) -> None:
        self._permission_denied = True
        self._cancel_timers()
        self._teardown_engine()
        self._apply(SessionEvent.PERMISSION_ERROR)
        if not self._permission_notified:
            self._permission_notified = True
            self._notify(
                'Microphone access denied. Please check your browser permissions.',
                key='mic-permission-error',
            )

    def _handle_error(self, kind: EngineErrorKind) -> None:
        self._apply(SessionEvent.ENGINE_ERROR)
        self._cancel_handle('_retry_handle')
        self._cancel_handle('_restart_handle')
        if not self._desired:
            return

        if kind == EngineErrorKind.NETWORK:
            delay = self.timings.network_retry_delay
        elif kind == EngineErrorKind.NO_SPEECH:
            delay = self.timings.no_speech_retry_delay
        elif self.retry_attempts < self.timings.max_retry_attempts:
            self.retry_attempts += 1
            delay = self.timings.backoff_delay(self.retry_attempts)
            logger.info(
                f"Attempting to reconnect ({self.retry_attempts}/"
                f"{self.timings.max_retry_attempts}) in {delay:.2f}s"
            )
        else:
            self.retry_attempts = 0
            self._notify(
                'Voice recognition failed to connect. Please refresh the page.',
                key='voice-recognition-error',
            )
            delay = self.timings.final_retry_delay
            logger.warning(f"Retry limit reached, final attempt in {delay:.1f}s")

        self._retry_handle = self._get_loop().call_later(delay, self._retry)

    def _retry(self) -> None:
        self._retry_handle = None
        if self._desired and not self._permission_denied:
            self._launch()

    # ------------------------------------------------------------------
    # Watchdog
    # ------------------------------------------------------------------

    def _schedule_watchdog(self) -> None:
        interval = self.timings.watchdog_interval
        if not interval or self._watchdog_handle is not None:
            return
        self._watchdog_handle = self._get_loop().call_later(interval, self._watchdog)

    def _watchdog(self) -> None:
        self._watchdog_handle = None
        if not self._desired or self._permission_denied:
            return

        stalled = (
            self.state not in (SessionState.LISTENING, SessionState.PROCESSING)
            and self._retry_handle is None
            and self._restart_handle is None
            and time.monotonic() - self._state_since >= self.timings.watchdog_interval
        )
        if stalled:
            logger.info("Recognition appears to be inactive, restarting...")
            self._launch()
        self._schedule_watchdog()

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _cancel_handle(self, name: str) -> None:
        handle = getattr(self, name)
        if handle is not None:
            handle.cancel()
            setattr(self, name, None)

    def _cancel_timers(self) -> None:
        for name in ('_retry_handle', '_restart_handle', '_watchdog_handle'):
            self._cancel_handle(name)
