"""
In-memory participation store.

Holds the roster, sections, tracking flags, settings and participation
records. It plays three roles for the voice pipeline: roster provider,
tracking state provider and participation sink.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from dotenv import load_dotenv

from src.tracking.models import ParticipationRecord, Section, Settings, Student
from src.tracking.notifications import NotificationCenter
from src.voice.name_resolver import NameDetectionMode
from src.voice.qualities import QualityLevel

load_dotenv()

logger = logging.getLogger(__name__)

LOW_PARTICIPATION_MINUTES = int(os.getenv('LOW_PARTICIPATION_MINUTES', '30'))


class StoreError(Exception):
    """Base class for participation store errors."""


class StudentNotFoundError(StoreError):
    """Raised when a student id is unknown."""


class SectionNotFoundError(StoreError):
    """Raised when a section id is unknown."""


class ProtectedStudentError(StoreError):
    """Raised when removing a protected student."""


class ParticipationStore:
    """
    Roster, tracking state and participation records.

    Attributes:
        notifier: Notification sink for user-facing messages
        settings: Recognition settings
        records: Participation records, oldest first
    """

    def __init__(
        self,
        notifier: Optional[NotificationCenter] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.notifier = notifier or NotificationCenter()
        self.settings = Settings()
        self.records: List[ParticipationRecord] = []
        self._students: Dict[str, Student] = {}
        self._sections: Dict[str, Section] = {}
        self._current_section_id: Optional[str] = None
        self._is_tracking = False
        self._listeners: List[Callable[[bool], None]] = []
        self._clock = clock

    # ------------------------------------------------------------------
    # Tracking state
    # ------------------------------------------------------------------

    @property
    def is_tracking(self) -> bool:
        return self._is_tracking

    @property
    def current_section_id(self) -> Optional[str]:
        return self._current_section_id

    @property
    def name_detection_mode(self) -> NameDetectionMode:
        return self.settings.name_detection_mode

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """
        Register a listener called with the new tracking flag on every change.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_tracking(self, value: bool) -> None:
        if self._is_tracking == value:
            return
        self._is_tracking = value
        for listener in list(self._listeners):
            listener(value)

    def request_start(self) -> bool:
        """
        Start tracking participation in the current section.

        Returns:
            False if no section is selected
        """
        if not self._current_section_id:
            self.notifier.notify(
                'Please select a section to start tracking', level='error', key='no-section'
            )
            return False
        if self._is_tracking:
            return True
        self._set_tracking(True)
        self.notifier.notify('Started tracking participation', level='success')
        return True

    def request_stop(self) -> None:
        """Stop tracking participation."""
        if not self._is_tracking:
            return
        self._set_tracking(False)
        self.notifier.notify('Stopped tracking participation', level='success')

    def update_settings(self, name_detection_mode: Optional[Union[str, NameDetectionMode]] = None) -> Settings:
        """Update recognition settings."""
        if name_detection_mode is not None:
            self.settings.name_detection_mode = NameDetectionMode(name_detection_mode)
            logger.info(f"Name detection mode set to {self.settings.name_detection_mode.value}")
        return self.settings

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    @property
    def sections(self) -> List[Section]:
        return list(self._sections.values())

    def add_section(self, name: str, description: Optional[str] = None) -> Section:
        section = Section(name=name, description=description)
        self._sections[section.id] = section
        self.notifier.notify(f"Added section: {name}", level='success')
        return section

    def remove_section(self, section_id: str) -> None:
        """Remove a section; its students become unassigned."""
        if section_id not in self._sections:
            raise SectionNotFoundError(section_id)
        del self._sections[section_id]
        for student in self._students.values():
            if student.section_id == section_id:
                student.section_id = None
        if self._current_section_id == section_id:
            self._current_section_id = None
        self.notifier.notify('Section removed', level='success')

    def set_current_section(self, section_id: Optional[str]) -> None:
        """Select the section participation is tracked for (None clears it)."""
        if section_id is None:
            self._current_section_id = None
            self.notifier.notify('Cleared section selection', level='success')
            return
        section = self._sections.get(section_id)
        if section is None:
            raise SectionNotFoundError(section_id)
        self._current_section_id = section_id
        self.notifier.notify(f"Selected section: {section.name}", level='success')

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    @property
    def students(self) -> List[Student]:
        return list(self._students.values())

    def get_student(self, student_id: str) -> Student:
        student = self._students.get(student_id)
        if student is None:
            raise StudentNotFoundError(student_id)
        return student

    def roster(self) -> List[Student]:
        """Students of the current section, in insertion order."""
        if not self._current_section_id:
            return []
        return [
            s for s in self._students.values()
            if s.section_id == self._current_section_id
        ]

    def add_student(
        self,
        first_name: str,
        last_name: str,
        section_id: Optional[str] = None
    ) -> Student:
        if section_id is not None and section_id not in self._sections:
            raise SectionNotFoundError(section_id)
        student = Student(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            section_id=section_id,
        )
        self._students[student.id] = student
        self.notifier.notify(f"Added student: {student.full_name}", level='success')
        return student

    def remove_student(self, student_id: str) -> None:
        """
        Remove a student and their participation records.

        Raises:
            StudentNotFoundError: Unknown student
            ProtectedStudentError: Student is protected
        """
        student = self.get_student(student_id)
        if student.protected:
            self.notifier.notify('Cannot delete a protected student record', level='error')
            raise ProtectedStudentError(student_id)
        del self._students[student_id]
        self.records = [r for r in self.records if r.student_id != student_id]
        self.notifier.notify('Student removed', level='success')

    def toggle_protection(self, student_id: str) -> Student:
        student = self.get_student(student_id)
        student.protected = not student.protected
        state = 'protected' if student.protected else 'unprotected'
        self.notifier.notify(f"{student.full_name} is now {state}", level='success')
        return student

    def update_student_section(self, student_id: str, section_id: Optional[str]) -> Student:
        student = self.get_student(student_id)
        if section_id is not None and section_id not in self._sections:
            raise SectionNotFoundError(section_id)
        student.section_id = section_id
        section_name = self._sections[section_id].name if section_id else 'None'
        self.notifier.notify(
            f"Updated {student.first_name}'s section to {section_name}", level='success'
        )
        return student

    # ------------------------------------------------------------------
    # Participation
    # ------------------------------------------------------------------

    async def record(
        self,
        student: Union[Student, str],
        duration_seconds: int,
        quality: QualityLevel,
        matched_keywords: List[str],
        confidence: float
    ) -> Optional[ParticipationRecord]:
        """
        Record a scored participation.

        Args:
            student: Student or student id
            duration_seconds: Credited speaking time
            quality: Awarded quality level
            matched_keywords: Transcript words
            confidence: Heuristic certainty

        Returns:
            The new record, or None when tracking is not active

        Raises:
            StudentNotFoundError: The student is no longer on the roster
        """
        if not self._is_tracking:
            self.notifier.notify('Please start tracking first', level='error', key='not-tracking')
            return None

        student_id = student if isinstance(student, str) else student.id
        stored = self.get_student(student_id)

        now = self._clock()
        record = ParticipationRecord(
            student_id=stored.id,
            duration=duration_seconds,
            quality=quality,
            keywords=list(matched_keywords),
            confidence=confidence,
            timestamp=now,
        )
        self.records.append(record)

        stored.participation_count += 1
        stored.last_participation = now
        stored.total_score += quality.score
        logger.info(f"Updated score for {stored.full_name}: {stored.total_score}")

        self.notifier.notify(
            f"Recorded {quality.keyword} (Score: {quality.score}) participation "
            f"for {stored.last_name}, {stored.first_name}",
            level='success',
        )

        self.update_rankings()
        self._check_low_participation(now)
        return record

    def update_rankings(self) -> None:
        """Rank students of the current section (or everyone) by total score."""
        if self._current_section_id:
            ranked = [
                s for s in self._students.values()
                if s.section_id == self._current_section_id
            ]
        else:
            ranked = list(self._students.values())

        ranked.sort(key=lambda s: s.total_score, reverse=True)
        for position, student in enumerate(ranked, start=1):
            if student.rank != 0 and student.rank != position:
                direction = 'up' if position < student.rank else 'down'
                self.notifier.notify(
                    f"{student.full_name} moved {direction} to rank {position}",
                    level='info',
                )
            student.rank = position

    def _check_low_participation(self, now: datetime) -> None:
        cutoff = now - timedelta(minutes=LOW_PARTICIPATION_MINUTES)
        quiet = [
            s for s in self.roster()
            if s.last_participation is None or s.last_participation < cutoff
        ]
        if quiet:
            names = ', '.join(s.full_name for s in quiet[:5])
            self.notifier.notify(
                f"{len(quiet)} student(s) have not participated in "
                f"{LOW_PARTICIPATION_MINUTES} minutes: {names}",
                level='info',
                key='low-participation',
            )

    def records_for(self, student_id: str) -> List[ParticipationRecord]:
        return [r for r in self.records if r.student_id == student_id]
