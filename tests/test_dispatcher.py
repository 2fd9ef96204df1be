"""Tests for transcript dispatch."""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from src.voice.dispatcher import (
    PARTICIPATION_CONFIDENCE,
    DispatchResult,
    SignalKind,
    TranscriptDispatcher,
)
from src.voice.name_resolver import NameDetectionMode
from src.voice.qualities import EXCELLENT, VERY_GOOD


@dataclass
class FakeStudent:
    first_name: str
    last_name: str
    id: str = ''


@dataclass
class FakeTracking:
    """Minimal tracking state provider."""

    is_tracking: bool = True
    current_section_id: Optional[str] = 'section-1'
    name_detection_mode: NameDetectionMode = NameDetectionMode.BOTH
    starts: int = 0
    stops: int = 0

    def request_start(self) -> bool:
        self.starts += 1
        self.is_tracking = True
        return True

    def request_stop(self) -> None:
        self.stops += 1
        self.is_tracking = False


@dataclass
class FakeRoster:
    students: List[FakeStudent] = field(default_factory=list)

    def roster(self):
        return list(self.students)


@pytest.fixture
def tracking():
    return FakeTracking()


@pytest.fixture
def roster():
    return FakeRoster([
        FakeStudent('Jane', 'Smith', 's1'),
        FakeStudent('Bob', 'Jones', 's2'),
    ])


@pytest.fixture
def sink():
    sink = Mock()
    sink.record = AsyncMock(return_value=None)
    return sink


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def dispatcher(tracking, roster, sink, notifier):
    return TranscriptDispatcher(
        tracking=tracking,
        roster_provider=roster,
        sink=sink,
        notifier=notifier,
    )


class TestCommands:
    """Test suite for start/stop command handling."""

    @pytest.mark.asyncio
    async def test_start_command(self, dispatcher, tracking, sink):
        """Test a start phrase requests tracking start."""
        tracking.is_tracking = False
        result = await dispatcher.dispatch('start tracking')
        assert result.kind == SignalKind.START_COMMAND
        assert tracking.starts == 1
        sink.record.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_without_section(self, dispatcher, tracking, notifier):
        """Test a start command without a section is refused and reported."""
        tracking.is_tracking = False
        tracking.current_section_id = None
        result = await dispatcher.dispatch('start tracking')
        assert result.kind == SignalKind.IGNORED
        assert result.reason == 'no_section'
        assert tracking.starts == 0
        notifier.notify.assert_called_once()
        assert notifier.notify.call_args.kwargs['key'] == 'no-section'

    @pytest.mark.asyncio
    async def test_stop_command(self, dispatcher, tracking):
        """Test a stop phrase requests tracking stop."""
        result = await dispatcher.dispatch('stop tracking')
        assert result.kind == SignalKind.STOP_COMMAND
        assert tracking.stops == 1

    @pytest.mark.asyncio
    async def test_start_takes_precedence(self, dispatcher, tracking):
        """Test start is checked before stop."""
        result = await dispatcher.dispatch('start tracking and stop tracking')
        assert result.kind == SignalKind.START_COMMAND
        assert tracking.stops == 0

    @pytest.mark.asyncio
    async def test_command_also_mentioning_student(self, dispatcher, sink):
        """Test a command utterance never records participation."""
        result = await dispatcher.dispatch('stop tracking smith answered excellent')
        assert result.kind == SignalKind.STOP_COMMAND
        sink.record.assert_not_called()


class TestParticipation:
    """Test suite for participation scoring."""

    @pytest.mark.asyncio
    async def test_records_participation(self, dispatcher, roster, sink):
        """Test name, trigger and quality together record an event."""
        result = await dispatcher.dispatch('smith answered very good')

        assert result.kind == SignalKind.PARTICIPATION_RECORDED
        assert result.event.student is roster.students[0]
        assert result.event.quality is VERY_GOOD
        assert result.event.confidence == PARTICIPATION_CONFIDENCE
        assert result.event.matched_keywords == ['smith', 'answered', 'very', 'good']

        sink.record.assert_awaited_once()
        args = sink.record.await_args.args
        assert args[0] is roster.students[0]
        assert args[1] == 60
        assert args[2] is VERY_GOOD
        assert args[3] == ['smith', 'answered', 'very', 'good']
        assert args[4] == 0.8

    @pytest.mark.asyncio
    async def test_not_tracking(self, dispatcher, tracking, sink):
        """Test participation is ignored while tracking is off."""
        tracking.is_tracking = False
        result = await dispatcher.dispatch('smith answered excellent')
        assert result.reason == 'not_tracking'
        sink.record.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_section(self, dispatcher, tracking, sink):
        """Test participation is ignored without a section."""
        tracking.current_section_id = None
        result = await dispatcher.dispatch('smith answered excellent')
        assert result.reason == 'not_tracking'
        sink.record.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_trigger(self, dispatcher, sink):
        """Test a name and quality without a trigger word is ignored."""
        result = await dispatcher.dispatch('smith excellent')
        assert result.kind == SignalKind.IGNORED
        assert result.reason == 'no_trigger'
        sink.record.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_name(self, dispatcher, sink):
        """Test a quality without a roster name is ignored."""
        result = await dispatcher.dispatch('someone answered excellent')
        assert result.reason == 'no_name'
        sink.record.assert_not_called()

    @pytest.mark.asyncio
    async def test_name_without_quality(self, dispatcher, sink, notifier):
        """Test a name without a quality is not scored and is reported."""
        result = await dispatcher.dispatch('smith answered the question')
        assert result.reason == 'no_quality'
        sink.record.assert_not_called()
        notifier.notify.assert_called_once()
        assert notifier.notify.call_args.kwargs['level'] == 'info'

    @pytest.mark.asyncio
    async def test_no_cross_transcript_pairing(self, dispatcher, sink):
        """Test a name and a quality in separate transcripts never pair up."""
        first = await dispatcher.dispatch('smith answered the question')
        second = await dispatcher.dispatch('that answer was excellent')
        assert first.reason == 'no_quality'
        assert second.reason == 'no_name'
        sink.record.assert_not_called()

    @pytest.mark.asyncio
    async def test_roster_read_fresh(self, dispatcher, roster, sink):
        """Test roster changes are visible on the next dispatch."""
        roster.students.append(FakeStudent('Maria', 'Garcia', 's3'))
        result = await dispatcher.dispatch('garcia answered excellent')
        assert result.event.student.id == 's3'
        assert result.event.quality is EXCELLENT

    @pytest.mark.asyncio
    async def test_name_detection_mode(self, dispatcher, tracking, sink):
        """Test the tracking provider's name mode is applied."""
        tracking.name_detection_mode = NameDetectionMode.LAST_NAME
        result = await dispatcher.dispatch('jane answered excellent')
        assert result.reason == 'no_name'

    @pytest.mark.asyncio
    async def test_sink_failure(self, dispatcher, sink, notifier):
        """Test a failing sink yields an ignored result and a notification."""
        sink.record.side_effect = RuntimeError('disk full')
        result = await dispatcher.dispatch('smith answered excellent')
        assert result.kind == SignalKind.IGNORED
        assert result.reason == 'record_failed'
        assert notifier.notify.call_args.kwargs['level'] == 'error'
        assert dispatcher.is_processing is False

    @pytest.mark.asyncio
    async def test_without_notifier(self, tracking, roster, sink):
        """Test dispatch works without a notification sink."""
        dispatcher = TranscriptDispatcher(tracking, roster, sink)
        result = await dispatcher.dispatch('smith answered the question')
        assert result.reason == 'no_quality'


class TestSingleFlight:
    """Test suite for the one-at-a-time processing guard."""

    @pytest.mark.asyncio
    async def test_concurrent_transcript_dropped(self, tracking, roster):
        """Test a transcript arriving mid-dispatch is dropped, not queued."""
        release = asyncio.Event()
        calls = []

        async def slow_record(*args):
            calls.append(args)
            await release.wait()

        sink = Mock()
        sink.record = slow_record
        dispatcher = TranscriptDispatcher(tracking, roster, sink)

        first = asyncio.create_task(dispatcher.dispatch('smith answered excellent'))
        await asyncio.sleep(0)
        assert dispatcher.is_processing is True

        second = await dispatcher.dispatch('jones answered good')
        assert second == DispatchResult.ignored('busy')

        release.set()
        result = await first
        assert result.kind == SignalKind.PARTICIPATION_RECORDED
        assert len(calls) == 1
        assert dispatcher.is_processing is False

    @pytest.mark.asyncio
    async def test_flag_cleared_after_ignore(self, dispatcher):
        """Test the guard is released after an ignored transcript."""
        await dispatcher.dispatch('nothing to see here')
        assert dispatcher.is_processing is False
        result = await dispatcher.dispatch('smith answered good')
        assert result.kind == SignalKind.PARTICIPATION_RECORDED

    @pytest.mark.asyncio
    async def test_quality_alone_later_is_not_paired(self, dispatcher, sink):
        """Test 'good' after a name-only remark records nothing."""
        first = await dispatcher.dispatch('smith participates')
        second = await dispatcher.dispatch('good')
        assert first.kind == SignalKind.IGNORED
        assert second.kind == SignalKind.IGNORED
        sink.record.assert_not_called()
