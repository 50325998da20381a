"""Video catalog module."""

from video_ingest.modules.video.models import Video
from video_ingest.modules.video.repository import VideoRepository
from video_ingest.modules.video.service import (
    CatalogWriter,
    VideoNotFoundError,
    VideoService,
    extract_hashtags,
)

__all__ = [
    # Models
    "Video",
    # Repository
    "VideoRepository",
    # Service
    "CatalogWriter",
    "VideoService",
    "VideoNotFoundError",
    "extract_hashtags",
]
