"""
Storyweaver Constants

Closed value sets and defaults shared across the system.
"""

from enum import Enum
from typing import Optional, Tuple

VERSION = "1.0.0"
PROJECT_NAME = "Storyweaver"

# =============================================================================
# BACKGROUND TASKS
# =============================================================================

class TaskType(Enum):
    """Display grouping for background tasks."""
    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"
    SCRIPT = "script"
    CHARACTER = "character"
    STORYBOARD = "storyboard"


class TaskStatus(Enum):
    """Lifecycle state of a background task."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.PENDING, TaskStatus.RUNNING)


INTERRUPTED_ERROR = "Task interrupted by shutdown"
CANCELLED_ERROR = "Task cancelled by user"
UNKNOWN_ERROR = "Unknown error"

# =============================================================================
# STORYBOARD PRODUCTION
# =============================================================================

class SceneOperation(Enum):
    """Per-scene media operations, in pipeline order."""
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


class OperationStatus(Enum):
    """Outcome of one per-scene operation."""
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class AspectRatio(Enum):
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"
    SQUARE = "1:1"


class CameraMotion(Enum):
    """Camera directives understood by the video collaborator."""
    STATIC = "Static"
    PAN_LEFT = "Pan Left"
    PAN_RIGHT = "Pan Right"
    ZOOM_IN = "Zoom In"
    ZOOM_OUT = "Zoom Out"
    TILT_UP = "Tilt Up"
    TILT_DOWN = "Tilt Down"

    @property
    def directive(self) -> Optional[str]:
        """Motion prompt for the video collaborator; None for a static camera."""
        return None if self is CameraMotion.STATIC else self.value


# Narration voices, assigned round-robin by scene index
VOICE_POOL: Tuple[str, ...] = ("Zephyr", "Kore", "Puck", "Charon", "Fenrir")

# Preferred order when picking a character's reference image
CHARACTER_IMAGE_ANGLES: Tuple[str, ...] = (
    "front",
    "three_quarter",
    "closeup",
    "left",
    "right",
    "back",
    "reference",
)

MAX_CHARACTER_REFERENCES = 3
DEFAULT_STYLE = "cinematic"
