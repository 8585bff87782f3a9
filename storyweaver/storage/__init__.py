"""
Storyweaver Storage Module
"""

from .record_store import (
    CHARACTERS,
    STORYBOARDS,
    TASKS,
    InMemoryRecordStore,
    JsonRecordStore,
    RecordStore,
    RecordStores,
)

__all__ = [
    "CHARACTERS",
    "STORYBOARDS",
    "TASKS",
    "InMemoryRecordStore",
    "JsonRecordStore",
    "RecordStore",
    "RecordStores",
]
