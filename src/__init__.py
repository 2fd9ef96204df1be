"""
Classroom Participation Voice Tracker - Core Package

Listens to an instructor's spoken remarks during class and turns them into
scored participation records for the students on the current roster.
"""

__version__ = "0.1.0"
__author__ = "Participation Tracker Team"

# Package metadata
__all__ = [
    'voice',
    'tracking',
    'web'
]
