"""
Pydantic models for the participation tracker web API.

Defines request/response schemas for all API endpoints.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.voice.name_resolver import NameDetectionMode


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy")
    version: str = Field(description="API version")


class StatusResponse(BaseModel):
    """Current tracking and recognition status."""

    is_tracking: bool
    current_section_id: Optional[str] = None
    session_state: str = Field(description="Recognition session state")
    permission_denied: bool = False
    name_detection_mode: NameDetectionMode
    student_count: int = Field(description="Students in the current section")
    record_count: int = Field(description="Participation records so far")
    browser_connected: bool = False


class SectionCreate(BaseModel):
    """Request body for creating a section."""

    name: str = Field(min_length=1)
    description: Optional[str] = None


class SectionResponse(BaseModel):
    """A class section."""

    id: str
    name: str
    description: Optional[str] = None
    created_at: str


class CurrentSectionRequest(BaseModel):
    """Request body for selecting the current section."""

    section_id: Optional[str] = None


class StudentCreate(BaseModel):
    """Request body for adding a student."""

    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    section_id: Optional[str] = None


class StudentResponse(BaseModel):
    """A roster entry with its participation totals."""

    id: str
    first_name: str
    last_name: str
    participation_count: int
    last_participation: Optional[str] = None
    rank: int
    total_score: int
    section_id: Optional[str] = None
    protected: bool


class QualityResponse(BaseModel):
    """A participation quality level."""

    keyword: str
    score: int = Field(ge=1, le=5)
    synonyms: List[str] = Field(default_factory=list)
    description: str = ""


class ParticipationResponse(BaseModel):
    """A recorded participation."""

    id: str
    student_id: str
    timestamp: str
    duration: int
    quality: QualityResponse
    keywords: List[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


class TranscriptRequest(BaseModel):
    """A finalized transcript submitted for dispatch."""

    transcript: str


class DispatchResponse(BaseModel):
    """Outcome of dispatching one transcript."""

    kind: str = Field(description="start_command, stop_command, participation_recorded or ignored")
    reason: str = ""
    student_id: Optional[str] = None
    quality: Optional[QualityResponse] = None
    matched_keywords: List[str] = Field(default_factory=list)
    confidence: Optional[float] = None


class TrackingResponse(BaseModel):
    """Result of a start/stop request."""

    is_tracking: bool
    session_state: str


class SettingsUpdate(BaseModel):
    """Request body for updating settings."""

    name_detection_mode: Optional[NameDetectionMode] = None


class SettingsResponse(BaseModel):
    """Current settings."""

    name_detection_mode: NameDetectionMode


class NotificationResponse(BaseModel):
    """A user-visible notification."""

    message: str
    level: str
    key: Optional[str] = None
    timestamp: float


class ErrorResponse(BaseModel):
    """Error response."""

    detail: str
    extra: Optional[Dict[str, Any]] = None
