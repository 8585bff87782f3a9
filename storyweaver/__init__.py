"""
Storyweaver - Background Tasks and Storyboard Production

Hosts long-running media generation work as persisted background tasks and
turns storyboards into frames, narration and transition clips.

Version: 1.0.0
"""

__version__ = "1.0.0"
__project__ = "Storyweaver"

from pathlib import Path

# Load environment variables early - before any other imports that might need them
from storyweaver.core.env_loader import ensure_env_loaded
ensure_env_loaded()

# Package root directory
PACKAGE_ROOT = Path(__file__).parent
PROJECT_ROOT = PACKAGE_ROOT.parent

__all__ = [
    "__version__",
    "PACKAGE_ROOT",
    "PROJECT_ROOT",
]
