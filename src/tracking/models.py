"""
Domain records for the participation store.

Plain dataclasses for students, sections, participation records and
user settings, with to_dict() helpers for the web API.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.voice.name_resolver import NameDetectionMode
from src.voice.qualities import QualityLevel


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Student:
    """
    A student on a class roster.

    Attributes:
        first_name: Given name, matched against transcripts
        last_name: Family name, matched against transcripts
        id: Unique identifier
        participation_count: Number of recorded participations
        last_participation: Time of the latest participation
        rank: Rank within the section by total score (0 = unranked)
        total_score: Sum of participation quality scores
        section_id: Section the student belongs to
        protected: Protected students cannot be removed
    """

    first_name: str
    last_name: str
    id: str = field(default_factory=_new_id)
    participation_count: int = 0
    last_participation: Optional[datetime] = None
    rank: int = 0
    total_score: int = 0
    section_id: Optional[str] = None
    protected: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'participation_count': self.participation_count,
            'last_participation': (
                self.last_participation.isoformat() if self.last_participation else None
            ),
            'rank': self.rank,
            'total_score': self.total_score,
            'section_id': self.section_id,
            'protected': self.protected,
        }


@dataclass
class Section:
    """A class section students are grouped into."""

    name: str
    description: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'created_at': self.created_at.isoformat(),
        }


@dataclass
class ParticipationRecord:
    """
    One scored participation.

    Attributes:
        student_id: Student the participation was credited to
        duration: Credited speaking time in seconds
        quality: Quality level awarded
        keywords: Words of the transcript that produced the record
        confidence: Heuristic certainty of the voice match
        id: Unique identifier
        timestamp: When the participation was recorded
    """

    student_id: str
    duration: int
    quality: QualityLevel
    keywords: List[str] = field(default_factory=list)
    confidence: float = 0.0
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'student_id': self.student_id,
            'timestamp': self.timestamp.isoformat(),
            'duration': self.duration,
            'quality': self.quality.to_dict(),
            'keywords': list(self.keywords),
            'confidence': self.confidence,
        }


@dataclass
class Settings:
    """User-adjustable recognition settings."""

    name_detection_mode: NameDetectionMode = NameDetectionMode.BOTH
