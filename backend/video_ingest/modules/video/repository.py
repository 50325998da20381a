"""Video repository for database operations."""

import uuid
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from video_ingest.modules.video.models import Video


class VideoRepository:
    """Repository for Video catalog rows."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def create(self, **fields) -> Video:
        """Insert a catalog row and flush it so server defaults are loaded.

        Returns:
            Video: Created video instance
        """
        video = Video(**fields)
        self.session.add(video)
        await self.session.flush()
        await self.session.refresh(video)
        return video

    async def get_by_id(self, video_id: uuid.UUID) -> Optional[Video]:
        result = await self.session.execute(select(Video).where(Video.id == video_id))
        return result.scalar_one_or_none()

    async def existing_ids(self, video_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]:
        """Return the subset of ``video_ids`` that have a catalog row."""
        ids = list(video_ids)
        if not ids:
            return set()
        result = await self.session.execute(select(Video.id).where(Video.id.in_(ids)))
        return set(result.scalars().all())
