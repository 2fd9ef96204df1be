"""
FastAPI web server for the participation tracker.

Provides REST endpoints for roster, section and tracking control, and a
WebSocket through which a browser tab acts as the speech engine.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from src.tracking.notifications import Notification
from src.tracking.service import ClassroomTracker
from src.tracking.store import (
    ProtectedStudentError,
    SectionNotFoundError,
    StudentNotFoundError,
)
from src.voice.dispatcher import DispatchResult
from src.voice.engines import RemoteEngineBridge
from src.web.models import (
    CurrentSectionRequest,
    DispatchResponse,
    HealthResponse,
    NotificationResponse,
    ParticipationResponse,
    QualityResponse,
    SectionCreate,
    SectionResponse,
    SettingsResponse,
    SettingsUpdate,
    StatusResponse,
    StudentCreate,
    StudentResponse,
    TrackingResponse,
    TranscriptRequest,
)

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
API_VERSION = "1.0.0"
CORS_ORIGINS = os.getenv('WEB_CORS_ORIGINS', '*').split(',')
STATIC_DIR = Path(__file__).parent.parent.parent / "static"

# Global bridge and tracker (one classroom per server process)
_bridge: Optional[RemoteEngineBridge] = None
_tracker: Optional[ClassroomTracker] = None


def get_bridge() -> RemoteEngineBridge:
    """Get or create the browser speech engine bridge."""
    global _bridge
    if _bridge is None:
        _bridge = RemoteEngineBridge()
    return _bridge


def get_tracker() -> ClassroomTracker:
    """Get or create the classroom tracker."""
    global _tracker
    if _tracker is None:
        _tracker = ClassroomTracker(engine_factory=get_bridge().create_engine)
    return _tracker


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting participation tracker server...")
    yield
    logger.info("Shutting down participation tracker server...")
    if _tracker is not None:
        _tracker.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Classroom Participation Tracker",
        description="Voice-driven classroom participation tracking API",
        version=API_VERSION,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if STATIC_DIR.exists():
        application.mount(
            "/static",
            StaticFiles(directory=str(STATIC_DIR)),
            name="static"
        )

    return application


app = create_app()


def _dispatch_response(result: DispatchResult) -> DispatchResponse:
    response = DispatchResponse(kind=result.kind.value, reason=result.reason)
    if result.event is not None:
        response.student_id = result.event.student.id
        response.quality = QualityResponse(**result.event.quality.to_dict())
        response.matched_keywords = list(result.event.matched_keywords)
        response.confidence = result.event.confidence
    return response


# ============================================================================
# Routes
# ============================================================================

@app.get("/", response_class=FileResponse)
async def serve_frontend():
    """Serve the frontend HTML page."""
    index_path = STATIC_DIR / "index.html"
    if index_path.exists():
        return FileResponse(str(index_path))
    raise HTTPException(status_code=404, detail="Frontend not found")


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="ok", version=API_VERSION)


@app.get("/api/status", response_model=StatusResponse)
async def get_status(
    tracker: ClassroomTracker = Depends(get_tracker),
    bridge: RemoteEngineBridge = Depends(get_bridge),
):
    """Current tracking, section and recognition session status."""
    return StatusResponse(**tracker.status(), browser_connected=bridge.connected)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

@app.get("/api/sections", response_model=List[SectionResponse])
async def list_sections(tracker: ClassroomTracker = Depends(get_tracker)):
    """List class sections."""
    return [SectionResponse(**s.to_dict()) for s in tracker.store.sections]


@app.post("/api/sections", response_model=SectionResponse, status_code=201)
async def create_section(
    body: SectionCreate,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """Create a class section."""
    section = tracker.store.add_section(body.name, body.description)
    return SectionResponse(**section.to_dict())


@app.post("/api/sections/current", response_model=StatusResponse)
async def select_section(
    body: CurrentSectionRequest,
    tracker: ClassroomTracker = Depends(get_tracker),
    bridge: RemoteEngineBridge = Depends(get_bridge),
):
    """Select (or clear) the section participation is tracked for."""
    try:
        tracker.store.set_current_section(body.section_id)
    except SectionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Section not found: {body.section_id}")
    return StatusResponse(**tracker.status(), browser_connected=bridge.connected)


# ---------------------------------------------------------------------------
# Students
# ---------------------------------------------------------------------------

@app.get("/api/students", response_model=List[StudentResponse])
async def list_students(
    section_id: Optional[str] = None,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """List students, optionally filtered by section."""
    students = tracker.store.students
    if section_id is not None:
        students = [s for s in students if s.section_id == section_id]
    return [StudentResponse(**s.to_dict()) for s in students]


@app.post("/api/students", response_model=StudentResponse, status_code=201)
async def create_student(
    body: StudentCreate,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """Add a student to the roster."""
    try:
        student = tracker.store.add_student(body.first_name, body.last_name, body.section_id)
    except SectionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Section not found: {body.section_id}")
    return StudentResponse(**student.to_dict())


@app.delete("/api/students/{student_id}")
async def delete_student(
    student_id: str,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """Remove an unprotected student and their records."""
    try:
        tracker.store.remove_student(student_id)
    except StudentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Student not found: {student_id}")
    except ProtectedStudentError:
        raise HTTPException(status_code=409, detail="Cannot delete a protected student record")
    return {"deleted": student_id}


@app.post("/api/students/{student_id}/protection", response_model=StudentResponse)
async def toggle_student_protection(
    student_id: str,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """Toggle deletion protection for a student."""
    try:
        student = tracker.store.toggle_protection(student_id)
    except StudentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Student not found: {student_id}")
    return StudentResponse(**student.to_dict())


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------

@app.post("/api/tracking/start", response_model=TrackingResponse)
async def start_tracking(tracker: ClassroomTracker = Depends(get_tracker)):
    """Start tracking participation in the current section."""
    if not tracker.start_tracking():
        raise HTTPException(status_code=409, detail="Please select a section to start tracking")
    return TrackingResponse(
        is_tracking=tracker.store.is_tracking,
        session_state=tracker.session.state.value,
    )


@app.post("/api/tracking/stop", response_model=TrackingResponse)
async def stop_tracking(tracker: ClassroomTracker = Depends(get_tracker)):
    """Stop tracking participation."""
    tracker.stop_tracking()
    return TrackingResponse(
        is_tracking=tracker.store.is_tracking,
        session_state=tracker.session.state.value,
    )


@app.post("/api/transcripts", response_model=DispatchResponse)
async def submit_transcript(
    body: TranscriptRequest,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """Dispatch a finalized transcript produced by an external recognizer."""
    result = await tracker.submit_transcript(body.transcript)
    return _dispatch_response(result)


@app.get("/api/participation", response_model=List[ParticipationResponse])
async def list_participation(
    student_id: Optional[str] = None,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """List participation records, optionally for one student."""
    records = tracker.store.records
    if student_id is not None:
        records = tracker.store.records_for(student_id)
    return [ParticipationResponse(**r.to_dict()) for r in records]


@app.get("/api/settings", response_model=SettingsResponse)
async def get_settings(tracker: ClassroomTracker = Depends(get_tracker)):
    """Current recognition settings."""
    return SettingsResponse(name_detection_mode=tracker.store.name_detection_mode)


@app.put("/api/settings", response_model=SettingsResponse)
async def update_settings(
    body: SettingsUpdate,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """Update recognition settings."""
    settings = tracker.store.update_settings(name_detection_mode=body.name_detection_mode)
    return SettingsResponse(name_detection_mode=settings.name_detection_mode)


@app.get("/api/notifications", response_model=List[NotificationResponse])
async def list_notifications(
    limit: int = 20,
    tracker: ClassroomTracker = Depends(get_tracker),
):
    """Most recent user-visible notifications."""
    return [NotificationResponse(**n.to_dict()) for n in tracker.notifier.recent(limit)]


# ---------------------------------------------------------------------------
# Browser speech engine
# ---------------------------------------------------------------------------

@app.websocket("/ws/recognition")
async def recognition_socket(
    websocket: WebSocket,
    tracker: ClassroomTracker = Depends(get_tracker),
    bridge: RemoteEngineBridge = Depends(get_bridge),
):
    """
    WebSocket through which the browser's speech recognizer is driven.

    Client -> server messages:
      {"type": "start", "engine": 3}                    recognizer started
      {"type": "result", "engine": 3, "transcript": "...", "is_final": true}
      {"type": "error", "engine": 3, "error": "not-allowed" | "network" | ...}
      {"type": "end", "engine": 3}                      recognizer ended
      {"type": "visibility", "visible": true}
      {"type": "permission", "granted": false}

    Server -> client messages:
      {"command": "start" | "stop", "engine": 3}
      {"type": "notification", "data": {...}}

    Recognizer events must echo the engine id of the command that created
    the recognizer; events for any other id are dropped.
    """
    await websocket.accept()
    pending: Set[asyncio.Task] = set()

    def push_notification(notification: Notification) -> None:
        task = asyncio.get_running_loop().create_task(
            websocket.send_json({"type": "notification", "data": notification.to_dict()})
        )
        pending.add(task)
        task.add_done_callback(pending.discard)

    send = websocket.send_json
    bridge.attach(send)
    unsubscribe = tracker.notifier.subscribe(push_notification)

    # A tab (re)connecting while tracking needs a fresh recognizer
    tracker.session.restart()

    try:
        while True:
            message: Dict[str, Any] = await websocket.receive_json()
            msg_type = message.get("type", "")
            logger.debug(f"WS recognition message type={msg_type}")

            if msg_type == "visibility":
                tracker.session.handle_visibility_change(bool(message.get("visible")))
            elif msg_type == "permission":
                if message.get("granted") is False:
                    tracker.session.report_permission_denied()
            elif not bridge.handle_message(message):
                logger.debug(f"Unhandled recognition message: {message}")

    except WebSocketDisconnect:
        logger.info("Recognition client disconnected")
    except Exception as e:
        logger.error(f"Recognition socket error: {e}", exc_info=True)
    finally:
        unsubscribe()
        bridge.detach(send)
        for task in pending:
            task.cancel()
