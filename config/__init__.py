"""
Configuration settings for StudyTrack.

This module provides the Config class with all settings.
When installed as a package, paths are relative to the package location
or can be overridden via environment variables.

Algorithms never read this class directly: the CLI and the service
composition root pass these values down as explicit parameters.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Try multiple locations for .env
for env_path in [
    Path.cwd() / ".env",  # Current working directory
    Path(__file__).parent.parent / ".env",  # Package root (when running from source)
    Path.home() / ".studytrack" / ".env",  # User config directory
]:
    if env_path.exists():
        load_dotenv(env_path, override=True)
        break


def _get_base_dir():
    """Get base directory, preferring environment variable or user config."""
    if os.getenv("STUDYTRACK_BASE_DIR"):
        return Path(os.getenv("STUDYTRACK_BASE_DIR"))
    user_dir = Path.home() / ".studytrack"
    if user_dir.exists():
        return user_dir
    # Fallback to package parent (for running from source)
    return Path(__file__).parent.parent


class Config:
    """Main configuration class for StudyTrack."""

    # Paths - can be overridden via STUDYTRACK_BASE_DIR / STUDYTRACK_DB_PATH
    BASE_DIR = _get_base_dir()
    DATA_DIR = BASE_DIR / "data"
    DB_PATH = Path(os.getenv("STUDYTRACK_DB_PATH", str(DATA_DIR / "studytrack.db")))

    # Progress Settings
    DEFAULT_THRESHOLD = int(os.getenv("STUDYTRACK_DEFAULT_THRESHOLD", "50"))
    SMOOTHING_ALPHA = float(os.getenv("STUDYTRACK_SMOOTHING_ALPHA", "0.7"))
    MASTERED_STREAK = int(os.getenv("STUDYTRACK_MASTERED_STREAK", "3"))
    DEFAULT_DETAIL_LEVEL = os.getenv("STUDYTRACK_DETAIL_LEVEL", "MANDATORY").upper()

    # Logging
    LOG_LEVEL = os.getenv("STUDYTRACK_LOG_LEVEL", "WARNING").upper()

    @classmethod
    def ensure_dirs(cls):
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
