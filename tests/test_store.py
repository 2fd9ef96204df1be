"""Tests for the in-memory participation store."""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from src.tracking.notifications import NotificationCenter
from src.tracking.store import (
    LOW_PARTICIPATION_MINUTES,
    ParticipationStore,
    ProtectedStudentError,
    SectionNotFoundError,
    StudentNotFoundError,
)
from src.voice.name_resolver import NameDetectionMode
from src.voice.qualities import EXCELLENT, GOOD, VERY_GOOD


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 9, 3, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return NotificationCenter(debounce_seconds=10)


@pytest.fixture
def store(notifier, clock):
    return ParticipationStore(notifier=notifier, clock=clock)


@pytest.fixture
def section(store):
    section = store.add_section('Period 3')
    store.set_current_section(section.id)
    return section


def _messages(notifier):
    return [n.message for n in notifier.recent(limit=100)]


class TestTrackingState:
    """Test suite for tracking flags."""

    def test_start_requires_section(self, store, notifier):
        """Test tracking cannot start without a section."""
        assert store.request_start() is False
        assert store.is_tracking is False
        assert notifier.recent()[-1].key == 'no-section'

    def test_start_and_stop(self, store, section):
        assert store.request_start() is True
        assert store.is_tracking is True
        store.request_stop()
        assert store.is_tracking is False

    def test_listeners_fire_on_change_only(self, store, section):
        """Test tracking listeners are called once per actual change."""
        listener = Mock()
        store.subscribe(listener)
        store.request_start()
        store.request_start()
        store.request_stop()
        assert [c.args[0] for c in listener.call_args_list] == [True, False]

    def test_repeated_start_notifies_once(self, store, notifier, section):
        """Test a start while already tracking is a silent no-op."""
        assert store.request_start() is True
        assert store.request_start() is True
        store.request_stop()
        store.request_stop()
        messages = _messages(notifier)
        assert messages.count('Started tracking participation') == 1
        assert messages.count('Stopped tracking participation') == 1

    def test_unsubscribe(self, store, section):
        listener = Mock()
        unsubscribe = store.subscribe(listener)
        unsubscribe()
        store.request_start()
        listener.assert_not_called()

    def test_update_settings(self, store):
        """Test the name detection mode accepts enum or string values."""
        store.update_settings(name_detection_mode='last_name')
        assert store.name_detection_mode == NameDetectionMode.LAST_NAME
        store.update_settings(name_detection_mode=NameDetectionMode.BOTH)
        assert store.name_detection_mode == NameDetectionMode.BOTH

    def test_update_settings_invalid(self, store):
        with pytest.raises(ValueError):
            store.update_settings(name_detection_mode='nickname')


class TestSectionsAndStudents:
    """Test suite for roster management."""

    def test_roster_scoped_to_current_section(self, store, section):
        """Test the roster only lists the current section's students."""
        other = store.add_section('Period 4')
        jane = store.add_student('Jane', 'Smith', section.id)
        store.add_student('Bob', 'Jones', other.id)
        store.add_student('Unassigned', 'Kid')
        assert store.roster() == [jane]

    def test_roster_empty_without_section(self, store):
        store.add_student('Jane', 'Smith')
        assert store.roster() == []

    def test_add_student_unknown_section(self, store):
        with pytest.raises(SectionNotFoundError):
            store.add_student('Jane', 'Smith', 'missing')

    def test_add_student_strips_names(self, store):
        student = store.add_student('  Jane ', ' Smith ')
        assert student.full_name == 'Jane Smith'

    def test_select_unknown_section(self, store):
        with pytest.raises(SectionNotFoundError):
            store.set_current_section('missing')

    def test_clear_section(self, store, section):
        store.set_current_section(None)
        assert store.current_section_id is None

    def test_remove_section(self, store, section):
        """Test removing a section unassigns students and clears selection."""
        jane = store.add_student('Jane', 'Smith', section.id)
        store.remove_section(section.id)
        assert jane.section_id is None
        assert store.current_section_id is None
        assert store.sections == []

    def test_remove_unknown_section(self, store):
        with pytest.raises(SectionNotFoundError):
            store.remove_section('missing')

    def test_students_protected_by_default(self, store, notifier):
        """Test new students are protected and cannot be removed."""
        jane = store.add_student('Jane', 'Smith')
        assert jane.protected is True
        with pytest.raises(ProtectedStudentError):
            store.remove_student(jane.id)
        assert notifier.recent()[-1].level == 'error'
        assert store.get_student(jane.id) is jane

    @pytest.mark.asyncio
    async def test_remove_unprotected_student(self, store, section):
        """Test removing an unprotected student drops their records."""
        jane = store.add_student('Jane', 'Smith', section.id)
        store.request_start()
        await store.record(jane, 60, GOOD, ['jane'], 0.8)
        store.toggle_protection(jane.id)
        store.remove_student(jane.id)
        assert store.students == []
        assert store.records == []

    def test_remove_unknown_student(self, store):
        with pytest.raises(StudentNotFoundError):
            store.remove_student('missing')

    def test_toggle_protection(self, store):
        jane = store.add_student('Jane', 'Smith')
        assert store.toggle_protection(jane.id).protected is False
        assert store.toggle_protection(jane.id).protected is True

    def test_update_student_section(self, store, section):
        jane = store.add_student('Jane', 'Smith')
        store.update_student_section(jane.id, section.id)
        assert store.roster() == [jane]
        store.update_student_section(jane.id, None)
        assert store.roster() == []


class TestRecord:
    """Test suite for participation recording."""

    @pytest.mark.asyncio
    async def test_record_updates_student(self, store, section, clock, notifier):
        """Test a record updates count, score and last participation."""
        jane = store.add_student('Jane', 'Smith', section.id)
        store.request_start()

        record = await store.record(jane, 60, VERY_GOOD, ['smith', 'answered'], 0.8)

        assert record.student_id == jane.id
        assert record.duration == 60
        assert record.quality is VERY_GOOD
        assert record.keywords == ['smith', 'answered']
        assert record.confidence == 0.8
        assert record.timestamp == clock.now
        assert jane.participation_count == 1
        assert jane.total_score == 4
        assert jane.last_participation == clock.now
        assert jane.rank == 1
        assert store.records_for(jane.id) == [record]
        assert 'Recorded Very Good (Score: 4) participation for Smith, Jane' in _messages(notifier)

    @pytest.mark.asyncio
    async def test_record_by_id(self, store, section):
        jane = store.add_student('Jane', 'Smith', section.id)
        store.request_start()
        record = await store.record(jane.id, 60, GOOD, [], 0.8)
        assert record.student_id == jane.id

    @pytest.mark.asyncio
    async def test_record_requires_tracking(self, store, section, notifier):
        """Test nothing is recorded while tracking is off."""
        jane = store.add_student('Jane', 'Smith', section.id)
        assert await store.record(jane, 60, GOOD, [], 0.8) is None
        assert store.records == []
        assert jane.participation_count == 0
        assert notifier.recent()[-1].key == 'not-tracking'

    @pytest.mark.asyncio
    async def test_record_unknown_student(self, store, section):
        store.request_start()
        with pytest.raises(StudentNotFoundError):
            await store.record('missing', 60, GOOD, [], 0.8)

    @pytest.mark.asyncio
    async def test_rankings_and_rank_change_notice(self, store, section, notifier):
        """Test students are ranked by score and rank changes are announced."""
        jane = store.add_student('Jane', 'Smith', section.id)
        bob = store.add_student('Bob', 'Jones', section.id)
        store.request_start()

        await store.record(jane, 60, GOOD, [], 0.8)
        assert (jane.rank, bob.rank) == (1, 2)

        await store.record(bob, 60, EXCELLENT, [], 0.8)
        assert (jane.rank, bob.rank) == (2, 1)
        messages = _messages(notifier)
        assert 'Bob Jones moved up to rank 1' in messages
        assert 'Jane Smith moved down to rank 2' in messages

    @pytest.mark.asyncio
    async def test_low_participation_alert(self, store, section, clock, notifier):
        """Test quiet students are reported once per debounce window."""
        jane = store.add_student('Jane', 'Smith', section.id)
        bob = store.add_student('Bob', 'Jones', section.id)
        store.request_start()

        await store.record(jane, 60, GOOD, [], 0.8)
        alerts = [n for n in notifier.recent(limit=100) if n.key == 'low-participation']
        assert len(alerts) == 1
        assert 'Bob Jones' in alerts[0].message
        assert 'Jane Smith' not in alerts[0].message

        clock.now += timedelta(minutes=LOW_PARTICIPATION_MINUTES + 1)
        await store.record(bob, 60, GOOD, [], 0.8)
        alerts = [n for n in notifier.recent(limit=100) if n.key == 'low-participation']
        assert len(alerts) == 1

    def test_record_to_dict(self, store):
        """Test records serialize with their nested quality."""
        from src.tracking.models import ParticipationRecord

        record = ParticipationRecord(
            student_id='s1', duration=60, quality=GOOD,
            keywords=['a'], confidence=0.8, timestamp=datetime(2024, 1, 1, 10, 0),
        )
        data = record.to_dict()
        assert data['quality']['score'] == 3
        assert data['timestamp'] == '2024-01-01T10:00:00'
