"""
Participation tracking: roster, sections, records and notifications.
"""

from src.tracking.models import ParticipationRecord, Section, Settings, Student
from src.tracking.notifications import Notification, NotificationCenter
from src.tracking.store import (
    ParticipationStore,
    ProtectedStudentError,
    SectionNotFoundError,
    StoreError,
    StudentNotFoundError,
)
from src.tracking.service import ClassroomTracker

__all__ = [
    'ParticipationRecord',
    'Section',
    'Settings',
    'Student',
    'Notification',
    'NotificationCenter',
    'ParticipationStore',
    'ProtectedStudentError',
    'SectionNotFoundError',
    'StoreError',
    'StudentNotFoundError',
    'ClassroomTracker',
]
