"""Video catalog service.

Writes the catalog row for a finished ingestion and serves lookups.
"""

import logging
import re
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from video_ingest.modules.ingestion.exceptions import PersistenceError
from video_ingest.modules.ingestion.models import (
    IngestionJob,
    PublishedArtifacts,
    VideoMetadata,
)
from video_ingest.modules.video.models import Video
from video_ingest.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled"

HASHTAG_PATTERN = re.compile(r"#\w+")


class VideoNotFoundError(Exception):
    """Raised when video is not found."""

    pass


def extract_hashtags(text: Optional[str]) -> list[str]:
    """Extract hashtags from free text.

    Tags keep their leading ``#``. Duplicates are dropped, first occurrence
    wins, so the result is stable for a given input.
    """
    if not text:
        return []
    seen: dict[str, None] = {}
    for tag in HASHTAG_PATTERN.findall(text):
        seen.setdefault(tag, None)
    return list(seen)


def resolve_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    return title or DEFAULT_TITLE


def resolve_description(description: Optional[str], title: Optional[str]) -> str:
    """Description falls back to the title, then to the default title."""
    description = (description or "").strip()
    if description:
        return description
    return resolve_title(title)


class CatalogWriter:
    """Persists one catalog row per successfully published job."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = VideoRepository(session)

    async def persist(
        self,
        job: IngestionJob,
        metadata: VideoMetadata,
        published: PublishedArtifacts,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Video:
        """Insert and commit the catalog row for ``job``.

        The row id is the job id, so a retried write for the same job can
        never produce a second row.

        Raises:
            PersistenceError: If the insert or commit failed; carries the
                keys already uploaded for this job
        """
        resolved_description = resolve_description(description, title)
        try:
            video = await self.repository.create(
                id=job.job_id,
                owner_id=job.owner_id,
                title=resolve_title(title),
                description=resolved_description,
                hashtags=extract_hashtags(resolved_description),
                duration=metadata.duration,
                width=metadata.width,
                height=metadata.height,
                container_format=metadata.format,
                mime_type=job.content_type,
                file_size=job.file_size,
                original_key=published.original_key,
                original_url=published.original_url,
                thumbnail_url=published.thumbnail_url,
                manifest_url=published.manifest_url,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(
                f"Failed to write catalog record: {e}",
                orphaned_keys=published.uploaded_keys,
            ) from e

        logger.info("Catalog record written", extra={"video_id": str(video.id)})
        return video


class VideoService:
    """Read access to the catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = VideoRepository(session)

    async def get_video(self, video_id: uuid.UUID) -> Video:
        """Get video by ID.

        Raises:
            VideoNotFoundError: If video not found
        """
        video = await self.repository.get_by_id(video_id)
        if not video:
            raise VideoNotFoundError(f"Video {video_id} not found")
        return video
