"""
Centralized environment variable loading for Storyweaver.

Ensures .env is loaded once before configuration or API keys are read.

Usage:
    from storyweaver.core.env_loader import ensure_env_loaded
    ensure_env_loaded()
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_env_loaded = False


def get_project_root() -> Path:
    """Get the project root directory (where .env is located)."""
    # storyweaver/core/env_loader.py -> project root is 2 levels up
    return Path(__file__).parent.parent.parent


def ensure_env_loaded(env_path: Optional[Path] = None) -> bool:
    """
    Ensure environment variables from .env are loaded.

    Values already present in the process environment win over the file.

    Returns:
        True if a .env file was loaded, False if already loaded or not found
    """
    global _env_loaded

    if _env_loaded:
        return False

    env_path = env_path or get_project_root() / ".env"
    if not env_path.exists():
        return False

    load_dotenv(env_path, override=False)
    _env_loaded = True
    return True


def get_api_key(key_name: str, fallback_keys: Optional[list[str]] = None) -> Optional[str]:
    """
    Get an API key from environment, with fallback options.

    Args:
        key_name: Primary environment variable name
        fallback_keys: List of fallback variable names to try

    Returns:
        API key value or None if not found
    """
    ensure_env_loaded()

    value = os.getenv(key_name)
    if value:
        return value

    for fallback in fallback_keys or []:
        value = os.getenv(fallback)
        if value:
            return value

    return None


def get_gemini_api_key() -> Optional[str]:
    """Get Gemini API key."""
    key = get_api_key("GEMINI_API_KEY", ["GOOGLE_API_KEY"])
    # .env.example placeholder
    if key == "MY_GEMINI_API_KEY":
        return None
    return key
