"""
Web server module for the participation tracker API.

Provides a FastAPI-based interface for roster management, tracking
control and a WebSocket bridge to the browser's speech recognizer.
"""

from src.web.server import app, create_app
from src.web.models import (
    DispatchResponse,
    ParticipationResponse,
    StatusResponse,
    StudentResponse,
)

__all__ = [
    "app",
    "create_app",
    "DispatchResponse",
    "ParticipationResponse",
    "StatusResponse",
    "StudentResponse",
]
