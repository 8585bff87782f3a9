"""
Background task record.

Persisted with camelCase keys so stored records keep the shape the studio
front end reads.
"""

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from storyweaver.core.constants import TaskStatus, TaskType


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class BackgroundTask:
    """A unit of asynchronous work tracked for user visibility and recovery."""
    id: str
    type: TaskType
    title: str
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    description: Optional[str] = None
    error: Optional[str] = None
    result: Any = None
    related_id: Optional[str] = None
    created_at: int = 0
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def evolve(self, **changes: Any) -> 'BackgroundTask':
        """Copy of this task with some fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "status": self.status.value,
            "progress": self.progress,
            "createdAt": self.created_at,
        }
        optional = {
            "description": self.description,
            "error": self.error,
            "result": self.result,
            "relatedId": self.related_id,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackgroundTask':
        return cls(
            id=data["id"],
            type=TaskType(data["type"]),
            title=data.get("title", ""),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            progress=int(data.get("progress", 0)),
            description=data.get("description"),
            error=data.get("error"),
            result=data.get("result"),
            related_id=data.get("relatedId"),
            created_at=int(data.get("createdAt", 0)),
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
        )
