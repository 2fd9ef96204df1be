"""
Voice recognition pipeline for participation tracking.

This package provides:
- Quality catalog and quality extraction
- Start/stop command phrase matching
- Student name resolution against the roster
- Transcript dispatch into commands and participation events
- Speech engine adapters and the recognition session lifecycle
"""

from src.voice.qualities import QUALITY_CATALOG, QualityLevel
from src.voice.commands import (
    PARTICIPATION_TRIGGERS,
    START_PHRASES,
    STOP_PHRASES,
    contains_trigger,
    matches,
)
from src.voice.quality_extractor import extract
from src.voice.name_resolver import (
    NameDetectionMode,
    NameMatchWeights,
    resolve,
)
from src.voice.dispatcher import (
    DispatchResult,
    ParticipationEvent,
    SignalKind,
    TranscriptDispatcher,
)
from src.voice.engines import (
    EngineErrorKind,
    MicrophoneInput,
    RemoteEngineBridge,
    RemoteSpeechEngine,
    SpeechEngine,
    SpeechRecognitionEngine,
)
from src.voice.session import (
    RecognitionSessionManager,
    SessionState,
    SessionTimings,
)

__all__ = [
    'QUALITY_CATALOG',
    'QualityLevel',
    'PARTICIPATION_TRIGGERS',
    'START_PHRASES',
    'STOP_PHRASES',
    'contains_trigger',
    'matches',
    'extract',
    'NameDetectionMode',
    'NameMatchWeights',
    'resolve',
    'DispatchResult',
    'ParticipationEvent',
    'SignalKind',
    'TranscriptDispatcher',
    'EngineErrorKind',
    'MicrophoneInput',
    'RemoteEngineBridge',
    'RemoteSpeechEngine',
    'SpeechEngine',
    'SpeechRecognitionEngine',
    'RecognitionSessionManager',
    'SessionState',
    'SessionTimings',
]
