"""
Storyweaver Background Tasks
"""

from .job import CancellationToken, FunctionJob, Job, ProgressReporter, as_job
from .registry import TaskRegistry

__all__ = [
    "CancellationToken",
    "FunctionJob",
    "Job",
    "ProgressReporter",
    "TaskRegistry",
    "as_job",
]
