#!/usr/bin/env python3
"""
Track participation from the local microphone.

Creates a section and roster from the command line, then listens until
interrupted. Say "start tracking" and remarks such as "Smith answered,
very good".

Usage:
    python scripts/listen_microphone.py --section "Period 3" \
        --student "Jane Smith" --student "Bob Jones"
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from src.tracking.service import ClassroomTracker
from src.voice.engines import MicrophoneInput, SpeechRecognitionEngine
from src.voice.name_resolver import NameDetectionMode


def _split_name(full_name: str):
    parts = full_name.strip().split()
    if len(parts) < 2:
        raise argparse.ArgumentTypeError(f"Expected 'First Last', got '{full_name}'")
    return parts[0], ' '.join(parts[1:])


async def run(args: argparse.Namespace) -> None:
    """Build the tracker and listen until cancelled."""
    microphone = MicrophoneInput(device_index=args.device)

    def engine_factory() -> SpeechRecognitionEngine:
        return SpeechRecognitionEngine(microphone, language=args.language)

    tracker = ClassroomTracker(engine_factory=engine_factory)
    tracker.store.update_settings(name_detection_mode=args.mode)

    section = tracker.store.add_section(args.section)
    for first_name, last_name in args.student:
        tracker.store.add_student(first_name, last_name, section.id)
    tracker.store.set_current_section(section.id)

    if args.start:
        tracker.start_tracking()
    else:
        # Listen for the spoken start command
        tracker.session.start()

    logger.info("Listening... Press Ctrl+C to stop")
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        tracker.close()
        for student in sorted(tracker.store.students, key=lambda s: -s.total_score):
            print(
                f"{student.full_name:<30} participations={student.participation_count:<3} "
                f"score={student.total_score}"
            )


def main():
    """Parse arguments and run the microphone tracker."""
    parser = argparse.ArgumentParser(
        description='Track classroom participation from the local microphone'
    )
    parser.add_argument('--section', default='Default', help='Section name')
    parser.add_argument(
        '--student',
        action='append',
        type=_split_name,
        default=[],
        help='Student as "First Last" (repeatable)'
    )
    parser.add_argument(
        '--device',
        type=int,
        default=int(os.environ['AUDIO_INPUT_DEVICE']) if os.getenv('AUDIO_INPUT_DEVICE') else None,
        help='Microphone device index (see scripts/list_audio_devices.py)'
    )
    parser.add_argument(
        '--language',
        default=os.getenv('SPEECH_LANGUAGE', 'en-US'),
        help='Recognition language code'
    )
    parser.add_argument(
        '--mode',
        choices=[m.value for m in NameDetectionMode],
        default=NameDetectionMode.BOTH.value,
        help='Which name parts to listen for'
    )
    parser.add_argument(
        '--start',
        action='store_true',
        help='Start tracking immediately instead of waiting for a voice command'
    )

    args = parser.parse_args()

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
