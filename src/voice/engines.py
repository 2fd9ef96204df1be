"""
Speech engine adapters.

A speech engine turns audio into finalized transcripts and reports its
lifecycle through four callbacks: started, result, error and ended. The
recognition session manager is the only component that creates, starts
or stops an engine.

Two adapters are provided:

- RemoteSpeechEngine: the recognizer runs in a connected browser tab
  (Web Speech API); commands and events travel over a WebSocket.
- SpeechRecognitionEngine: local microphone capture through the
  SpeechRecognition library, recognized with the Google Web Speech API.
"""

import asyncio
import functools
import logging
import os
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import speech_recognition as sr
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

LANGUAGE_CODE = os.getenv('SPEECH_LANGUAGE', 'en-US')
PHRASE_TIME_LIMIT = float(os.getenv('SPEECH_PHRASE_TIME_LIMIT', '8'))
MIC_CALIBRATION_SECONDS = float(os.getenv('MIC_CALIBRATION_SECONDS', '0.5'))


class EngineErrorKind(str, Enum):
    """Classification of engine errors for recovery decisions."""

    PERMISSION_DENIED = "permission-denied"
    NETWORK = "network"
    NO_SPEECH = "no-speech"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: Any) -> 'EngineErrorKind':
        """
        Map an engine error code onto an error kind.

        Browser codes 'not-allowed' and 'service-not-allowed' mean the
        microphone permission was refused. Unknown codes map to OTHER.
        """
        if isinstance(code, cls):
            return code
        value = str(code or '').strip().lower()
        if value in ('not-allowed', 'service-not-allowed', 'permission-denied'):
            return cls.PERMISSION_DENIED
        if value == 'network':
            return cls.NETWORK
        if value == 'no-speech':
            return cls.NO_SPEECH
        return cls.OTHER


class SpeechEngine(ABC):
    """
    Base class for speech engine adapters.

    Subclasses implement start() and stop() and report lifecycle events
    through the _emit_* helpers. Callbacks must be delivered on the event
    loop thread.
    """

    def __init__(self) -> None:
        self.on_start: Optional[Callable[[], None]] = None
        self.on_result: Optional[Callable[[str, bool], None]] = None
        self.on_error: Optional[Callable[[EngineErrorKind], None]] = None
        self.on_end: Optional[Callable[[], None]] = None

    def bind(
        self,
        on_start: Optional[Callable[[], None]] = None,
        on_result: Optional[Callable[[str, bool], None]] = None,
        on_error: Optional[Callable[[EngineErrorKind], None]] = None,
        on_end: Optional[Callable[[], None]] = None
    ) -> None:
        """Register lifecycle callbacks."""
        self.on_start = on_start
        self.on_result = on_result
        self.on_error = on_error
        self.on_end = on_end

    def unbind(self) -> None:
        """Drop all callbacks so late events from this engine go nowhere."""
        self.bind()

    @abstractmethod
    def start(self) -> None:
        """Begin listening. Confirmation arrives through on_start."""

    @abstractmethod
    def stop(self) -> None:
        """Stop listening. Completion arrives through on_end."""

    def _emit_start(self) -> None:
        if self.on_start is not None:
            self.on_start()

    def _emit_result(self, transcript: str, is_final: bool) -> None:
        if self.on_result is not None:
            self.on_result(transcript, is_final)

    def _emit_error(self, code: Any) -> None:
        if self.on_error is not None:
            self.on_error(EngineErrorKind.from_code(code))

    def _emit_end(self) -> None:
        if self.on_end is not None:
            self.on_end()


class RemoteSpeechEngine(SpeechEngine):
    """
    Speech engine whose recognizer runs in a browser tab.

    start() and stop() send {"command": ..., "engine": engine_id} messages
    through the supplied coroutine function; events reported by the
    browser are fed back in through handle_message(). The browser echoes
    the engine id on every event so events from a recognizer that was
    already replaced can be told apart.

    Attributes:
        send: Coroutine function delivering a JSON-able dict to the client
        engine_id: Generation number of this engine
    """

    def __init__(
        self,
        send: Callable[[Dict[str, Any]], Awaitable[None]],
        engine_id: int = 0
    ):
        super().__init__()
        self.send = send
        self.engine_id = engine_id
        self._pending: Set[asyncio.Task] = set()

    def _send_command(self, command: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, dropping '{command}' command")
            return
        task = loop.create_task(self.send({'command': command, 'engine': self.engine_id}))
        self._pending.add(task)
        task.add_done_callback(self._command_sent)

    def _command_sent(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Failed to deliver engine command: {error}")

    def start(self) -> None:
        self._send_command('start')

    def stop(self) -> None:
        self._send_command('stop')

    def handle_message(self, message: Dict[str, Any]) -> bool:
        """
        Feed an event reported by the browser into this engine.

        Args:
            message: Dict with a 'type' of start, result, error or end and
                the 'engine' id the event belongs to

        Returns:
            True if the message was an engine event for this engine
        """
        if message.get('engine') != self.engine_id:
            logger.debug(
                f"Dropping {message.get('type')} event for engine "
                f"{message.get('engine')}, current is {self.engine_id}"
            )
            return False

        event_type = message.get('type')
        if event_type == 'start':
            self._emit_start()
        elif event_type == 'result':
            transcript = str(message.get('transcript', ''))
            is_final = bool(message.get('is_final', False))
            self._emit_result(transcript, is_final)
        elif event_type == 'error':
            self._emit_error(message.get('error'))
        elif event_type == 'end':
            self._emit_end()
        else:
            return False
        return True


class RemoteEngineBridge:
    """
    Connects the current RemoteSpeechEngine to a WebSocket client.

    The session manager creates engines through create_engine(); each gets
    the next generation id and only events carrying the id of the most
    recently created engine are delivered.
    """

    def __init__(self) -> None:
        self._send: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None
        self._generation = 0
        self.engine: Optional[RemoteSpeechEngine] = None

    @property
    def connected(self) -> bool:
        return self._send is not None

    def attach(self, send: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        """Attach the send function of a newly connected client."""
        self._send = send
        logger.info("Browser speech engine connected")

    def detach(self, send: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None) -> None:
        """
        Forget the connected client.

        Args:
            send: Send function of the closing client. When given, the
                bridge detaches only if that client is still the attached one.
        """
        if send is not None and send != self._send:
            logger.debug("Superseded browser client closed, keeping current client")
            return
        self._send = None
        logger.info("Browser speech engine disconnected")

    async def send(self, payload: Dict[str, Any]) -> None:
        if self._send is None:
            logger.debug(f"No browser connected, dropping {payload}")
            return
        await self._send(payload)

    def create_engine(self) -> RemoteSpeechEngine:
        """Engine factory for the session manager."""
        self._generation += 1
        self.engine = RemoteSpeechEngine(self.send, engine_id=self._generation)
        return self.engine

    def handle_message(self, message: Dict[str, Any]) -> bool:
        if self.engine is None:
            logger.debug(f"No engine for browser event {message.get('type')}")
            return False
        return self.engine.handle_message(message)


class MicrophoneInput:
    """
    Microphone shared by successive SpeechRecognitionEngine instances.

    The session manager creates a new engine for every restart. The device
    is opened and calibrated for ambient noise once; later engines reuse
    the calibrated energy threshold. Blocking work runs in the default
    executor, and a new listener only starts after the previous listener
    thread has released the device.

    Attributes:
        device_index: Microphone device index (None = system default)
        recognizer: Recognizer holding the calibrated energy threshold
        calibration_seconds: Ambient noise sampling duration
    """

    def __init__(
        self,
        device_index: Optional[int] = None,
        recognizer: Optional[sr.Recognizer] = None,
        calibration_seconds: float = MIC_CALIBRATION_SECONDS
    ):
        self.device_index = device_index
        self.recognizer = recognizer or sr.Recognizer()
        self.calibration_seconds = calibration_seconds
        self._microphone: Optional[sr.Microphone] = None
        self._open_lock = threading.Lock()
        self._release: Optional[asyncio.Future] = None

    def _open(self) -> sr.Microphone:
        # Runs in the executor
        with self._open_lock:
            if self._microphone is None:
                microphone = sr.Microphone(device_index=self.device_index)
                with microphone as source:
                    self.recognizer.adjust_for_ambient_noise(
                        source, duration=self.calibration_seconds
                    )
                self._microphone = microphone
                logger.info(
                    f"Microphone calibrated, energy threshold "
                    f"{self.recognizer.energy_threshold}"
                )
            return self._microphone

    async def open(self) -> sr.Microphone:
        """Wait until the device is free, then return the calibrated microphone."""
        if self._release is not None:
            await self._release
        return await asyncio.get_running_loop().run_in_executor(None, self._open)

    def release(self, stopper: Callable[..., None]) -> None:
        """Stop a background listener and join its thread off the event loop."""
        self._release = asyncio.get_running_loop().run_in_executor(
            None, functools.partial(stopper, wait_for_stop=True)
        )


class SpeechRecognitionEngine(SpeechEngine):
    """
    Local microphone engine built on the SpeechRecognition library.

    Audio is captured on the library's background listener thread; every
    callback is handed back to the event loop with call_soon_threadsafe.

    Attributes:
        microphone: Shared microphone input
        language: Recognition language code
        phrase_time_limit: Maximum seconds per captured phrase
    """

    def __init__(
        self,
        microphone: Optional[MicrophoneInput] = None,
        language: str = LANGUAGE_CODE,
        phrase_time_limit: float = PHRASE_TIME_LIMIT
    ):
        super().__init__()
        self.microphone = microphone or MicrophoneInput()
        self.language = language
        self.phrase_time_limit = phrase_time_limit
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopper: Optional[Callable[..., None]] = None
        self._start_task: Optional[asyncio.Task] = None
        self._stopped = False

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        """Deliver a callback on the event loop from any thread."""
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            logger.debug("Event loop closed, dropping speech engine event")

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        self._start_task = self._loop.create_task(self._start_listening())

    async def _start_listening(self) -> None:
        try:
            source = await self.microphone.open()
        except (OSError, AttributeError) as e:
            logger.error(f"Failed to open microphone: {e}")
            self._emit_error('audio-capture')
            return

        if self._stopped:
            logger.debug("Engine stopped while the microphone was opening")
            return

        self._stopper = self.microphone.recognizer.listen_in_background(
            source,
            self._on_audio,
            phrase_time_limit=self.phrase_time_limit,
        )
        logger.info("Microphone listener started")
        self._emit_start()

    def _on_audio(self, recognizer: sr.Recognizer, audio: sr.AudioData) -> None:
        # Runs on the listener thread
        try:
            text = recognizer.recognize_google(audio, language=self.language)
        except sr.UnknownValueError:
            self._post(self._emit_error, 'no-speech')
            return
        except sr.RequestError as e:
            logger.warning(f"Speech service request failed: {e}")
            self._post(self._emit_error, 'network')
            return

        if isinstance(text, str) and text.strip():
            self._post(self._emit_result, text.lower(), True)

    def stop(self) -> None:
        self._stopped = True
        stopper, self._stopper = self._stopper, None
        if stopper is not None:
            self.microphone.release(stopper)
            logger.info("Microphone listener stopping")
        if self._loop is not None:
            self._loop.call_soon(self._emit_end)
