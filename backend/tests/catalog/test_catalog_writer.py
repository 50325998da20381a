"""Tests for the catalog writer and video lookups."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from video_ingest.modules.ingestion.exceptions import PersistenceError
from video_ingest.modules.ingestion.models import (
    IngestionJob,
    PublishedArtifacts,
    VideoMetadata,
)
from video_ingest.modules.video.models import Video
from video_ingest.modules.video.service import (
    CatalogWriter,
    VideoNotFoundError,
    VideoService,
)

METADATA = VideoMetadata(duration=12.5, width=1280, height=720, format="mov,mp4,m4a,3gp,3g2,mj2")


def make_session(commit_error: Exception = None) -> MagicMock:
    session = MagicMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.refresh = AsyncMock()
    session.rollback = AsyncMock()
    session.commit = AsyncMock(side_effect=commit_error)
    return session


def make_job() -> IngestionJob:
    job = IngestionJob(owner_id=uuid.uuid4(), original_filename="clip.mp4", content_type="video/mp4")
    job.file_size = 2048
    return job


def make_published(job_id: uuid.UUID, **overrides) -> PublishedArtifacts:
    base = f"https://media.example.com/videos/videos/{job_id}"
    fields = dict(
        original_key=f"videos/{job_id}/original.mp4",
        original_url=f"{base}/original.mp4",
        thumbnail_url=f"{base}/thumbnail.jpg",
        manifest_url=f"{base}/hls/playlist.m3u8",
        uploaded_keys=(
            f"videos/{job_id}/original.mp4",
            f"videos/{job_id}/thumbnail.jpg",
            f"videos/{job_id}/hls/segment_000.ts",
            f"videos/{job_id}/hls/playlist.m3u8",
        ),
    )
    fields.update(overrides)
    return PublishedArtifacts(**fields)


class TestCatalogWriter:

    @pytest.mark.asyncio
    async def test_persists_row_keyed_by_job(self):
        session = make_session()
        job = make_job()
        published = make_published(job.job_id)

        video = await CatalogWriter(session).persist(
            job, METADATA, published, title="Road trip", description="Day one #travel #roadtrip",
        )

        assert isinstance(video, Video)
        session.add.assert_called_once_with(video)
        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()
        assert video.id == job.job_id
        assert video.owner_id == job.owner_id
        assert video.title == "Road trip"
        assert video.description == "Day one #travel #roadtrip"
        assert video.hashtags == ["#travel", "#roadtrip"]
        assert (video.duration, video.width, video.height) == (12.5, 1280, 720)
        assert video.container_format == METADATA.format
        assert video.mime_type == "video/mp4"
        assert video.file_size == 2048
        assert video.original_key == published.original_key
        assert video.original_url == published.original_url
        assert video.thumbnail_url == published.thumbnail_url
        assert video.manifest_url == published.manifest_url

    @pytest.mark.asyncio
    async def test_missing_optional_artifacts_stored_as_null(self):
        job = make_job()
        published = make_published(job.job_id, thumbnail_url=None, manifest_url=None)

        video = await CatalogWriter(make_session()).persist(job, VideoMetadata.empty(), published)

        assert video.thumbnail_url is None
        assert video.manifest_url is None
        assert (video.duration, video.width, video.height) == (0.0, 0, 0)
        assert video.container_format == "unknown"

    @pytest.mark.asyncio
    async def test_defaults_title_and_description(self):
        job = make_job()

        video = await CatalogWriter(make_session()).persist(job, METADATA, make_published(job.job_id))

        assert video.title == "Untitled"
        assert video.description == "Untitled"
        assert video.hashtags == []

    @pytest.mark.asyncio
    async def test_hashtags_come_from_title_when_description_missing(self):
        job = make_job()

        video = await CatalogWriter(make_session()).persist(
            job, METADATA, make_published(job.job_id), title="Live #music",
        )

        assert video.description == "Live #music"
        assert video.hashtags == ["#music"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        OperationalError("INSERT INTO videos", {}, Exception("connection refused")),
        IntegrityError("INSERT INTO videos", {}, Exception("duplicate key")),
    ])
    async def test_write_failure_reports_orphaned_keys(self, error):
        session = make_session(commit_error=error)
        job = make_job()
        published = make_published(job.job_id)

        with pytest.raises(PersistenceError) as exc_info:
            await CatalogWriter(session).persist(job, METADATA, published)

        assert exc_info.value.stage == "persist"
        assert exc_info.value.orphaned_keys == published.uploaded_keys
        assert exc_info.value.__cause__ is error
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_flush_failure_is_persistence_error(self):
        session = make_session()
        session.flush = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("gone")))
        job = make_job()

        with pytest.raises(PersistenceError):
            await CatalogWriter(session).persist(job, METADATA, make_published(job.job_id))

        session.commit.assert_not_awaited()
        session.rollback.assert_awaited_once()


class TestVideoService:

    @staticmethod
    def session_returning(value) -> MagicMock:
        result = MagicMock()
        result.scalar_one_or_none.return_value = value
        session = MagicMock()
        session.execute = AsyncMock(return_value=result)
        return session

    @pytest.mark.asyncio
    async def test_get_video(self):
        video = Video(id=uuid.uuid4(), owner_id=uuid.uuid4(), title="Clip")
        service = VideoService(self.session_returning(video))

        assert await service.get_video(video.id) is video

    @pytest.mark.asyncio
    async def test_get_missing_video(self):
        service = VideoService(self.session_returning(None))

        with pytest.raises(VideoNotFoundError):
            await service.get_video(uuid.uuid4())
