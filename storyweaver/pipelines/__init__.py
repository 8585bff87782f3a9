"""
Storyweaver Pipelines
"""

from .storyboard_production import (
    ProductionReport,
    SceneOperationJob,
    SceneOutcome,
    StoryboardProductionJob,
    StoryboardProductionPipeline,
)

__all__ = [
    "ProductionReport",
    "SceneOperationJob",
    "SceneOutcome",
    "StoryboardProductionJob",
    "StoryboardProductionPipeline",
]
