"""
Units of work hosted by the task registry.

A Job exposes a single coroutine, run(progress), whose return value becomes
the task result and whose exception becomes the task error. Jobs receive a
ProgressReporter that persists progress and exposes cooperative cancellation.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union


class CancellationToken:
    """Advisory cancellation flag shared between the registry and a job."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


ProgressSink = Callable[[int, Optional[str]], Awaitable[None]]


class ProgressReporter:
    """
    Callable handed to a job: ``await progress(40, "Scene 2 image completed")``.

    Percent values are clamped to 0-100 by the registry before persisting.
    """

    def __init__(self, sink: ProgressSink, token: Optional[CancellationToken] = None):
        self._sink = sink
        self.token = token or CancellationToken()

    async def __call__(self, percent: float, description: Optional[str] = None) -> None:
        await self._sink(int(round(percent)), description)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


class Job(ABC):
    """A unit of work the registry can execute once per task id."""

    @abstractmethod
    async def run(self, progress: ProgressReporter) -> Any:
        """Do the work, reporting progress; return a JSON-serialisable result."""


JobFunction = Callable[[ProgressReporter], Awaitable[Any]]


class FunctionJob(Job):
    """Adapts a plain coroutine function to the Job interface."""

    def __init__(self, func: JobFunction, name: str = None):
        self.func = func
        self.name = name or getattr(func, "__name__", "job")

    async def run(self, progress: ProgressReporter) -> Any:
        return await self.func(progress)

    def __repr__(self) -> str:
        return f"FunctionJob({self.name})"


def as_job(work: Union[Job, JobFunction]) -> Job:
    """Accept either a Job or a coroutine function."""
    if isinstance(work, Job):
        return work
    if callable(work):
        return FunctionJob(work)
    raise TypeError(f"Expected a Job or coroutine function, got {type(work).__name__}")
