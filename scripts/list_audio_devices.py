#!/usr/bin/env python3
"""
List all available audio input devices.

Usage:
    python scripts/list_audio_devices.py
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import speech_recognition as sr


def list_audio_devices():
    """List all microphones SpeechRecognition can open."""
    print("\n" + "="*70)
    print("Available Audio Input Devices")
    print("="*70)

    try:
        names = sr.Microphone.list_microphone_names()
    except (AttributeError, OSError) as e:
        print(f"\nERROR: Could not query audio devices: {e}")
        print("Install microphone support with: pip install pyaudio")
        sys.exit(1)

    if not names:
        print("\nNo input devices found!")
        print("Check your microphone connections and permissions.")
    else:
        for index, name in enumerate(names):
            print(f"Device Index: {index:>3}  Name: {name}")

    print("\n" + "="*70)
    print("Configuration:")
    print("="*70)
    print("\nSet AUDIO_INPUT_DEVICE in .env to use a specific device.")
    print("Example: AUDIO_INPUT_DEVICE=0")
    print("")


if __name__ == "__main__":
    list_audio_devices()
