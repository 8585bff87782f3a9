"""
Storyweaver Custom Exceptions

Exception hierarchy shared by the task registry, the production pipeline and
the generation collaborators.
"""

import re
from enum import Enum
from typing import Optional


class StoryweaverError(Exception):
    """Base exception for all Storyweaver errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        return self.message


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(StoryweaverError):
    """Raised when there's an issue with configuration."""
    pass


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""
    pass


# =============================================================================
# STORAGE ERRORS
# =============================================================================

class StorageError(StoryweaverError):
    """Raised when the record store cannot read or write a record."""
    pass


class RecordNotFoundError(StorageError):
    """Raised when a record is required but missing."""

    def __init__(self, collection: str, record_id: str):
        message = f"Record '{record_id}' not found in '{collection}'"
        super().__init__(message, {"collection": collection, "id": record_id})


# =============================================================================
# TASK ERRORS
# =============================================================================

class TaskError(StoryweaverError):
    """Base exception for background task errors."""
    pass


class TaskNotFoundError(TaskError):
    """Raised when a task id is unknown."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: '{task_id}'", {"task_id": task_id})


class RegistryNotInitializedError(TaskError):
    """Raised when the registry is used before init()."""

    def __init__(self):
        super().__init__("Task registry used before init()")


# =============================================================================
# PIPELINE ERRORS
# =============================================================================

class PipelineError(StoryweaverError):
    """Base exception for pipeline errors."""
    pass


class StoryboardNotFoundError(PipelineError):
    """Raised when the storyboard to produce does not exist."""

    def __init__(self, storyboard_id: str):
        super().__init__(
            f"Storyboard not found: '{storyboard_id}'",
            {"storyboard_id": storyboard_id},
        )


class SceneOperationError(PipelineError):
    """Raised when a single-scene operation could not produce its media."""

    def __init__(self, operation: str, scene_index: int, reason: str):
        message = f"Scene {scene_index + 1} {operation} failed: {reason}"
        super().__init__(
            message,
            {"operation": operation, "scene_index": scene_index, "reason": reason},
        )


# =============================================================================
# GENERATION ERRORS
# =============================================================================

class GenerationErrorKind(Enum):
    """Failure categories produced at the collaborator boundary."""
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    UNKNOWN = "unknown"


class GenerationError(StoryweaverError):
    """Raised by a generation collaborator when it cannot produce media."""

    kind = GenerationErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        provider: str = None,
        status_code: Optional[int] = None,
        kind: Optional[GenerationErrorKind] = None,
    ):
        super().__init__(message, {"provider": provider, "status_code": status_code})
        self.provider = provider
        self.status_code = status_code
        if kind is not None:
            self.kind = kind


class RateLimitedError(GenerationError):
    """Provider rejected the call with a rate-limit / quota signal."""
    kind = GenerationErrorKind.RATE_LIMITED


class ForbiddenError(GenerationError):
    """Provider rejected the credentials or the model is not available."""
    kind = GenerationErrorKind.FORBIDDEN


# Rate-limit phrases only, so "rated" or "generate" never count
RATE_LIMIT_PATTERN = re.compile(
    r"\b429\b|resource_exhausted|too many requests|\brate[\s_-]?limit|\brate exceeded"
)
FORBIDDEN_PATTERN = re.compile(r"\b403\b|permission_denied")


def classify_error(error: BaseException) -> GenerationErrorKind:
    """
    Map an exception onto the generation error taxonomy.

    Typed GenerationErrors carry their own kind. Anything else (an SDK
    exception that slipped past a collaborator) is inspected by status code
    and message.
    """
    if isinstance(error, GenerationError):
        return error.kind

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if status == 429:
        return GenerationErrorKind.RATE_LIMITED
    if status == 403:
        return GenerationErrorKind.FORBIDDEN

    text = str(error).lower()
    if RATE_LIMIT_PATTERN.search(text):
        return GenerationErrorKind.RATE_LIMITED
    if FORBIDDEN_PATTERN.search(text):
        return GenerationErrorKind.FORBIDDEN
    return GenerationErrorKind.UNKNOWN
