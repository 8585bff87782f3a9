"""
Storyweaver Models

Persisted documents: background tasks, storyboards, scenes and characters.
"""

from .task import BackgroundTask, now_ms
from .storyboard import Character, Scene, Storyboard

__all__ = [
    "BackgroundTask",
    "Character",
    "Scene",
    "Storyboard",
    "now_ms",
]
