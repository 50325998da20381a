"""Core module for configuration and utilities."""

from video_ingest.core.config import settings
from video_ingest.core.database import Base, get_db

__all__ = [
    "settings",
    "Base",
    "get_db",
]
