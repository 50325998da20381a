"""Tests for the ingestion orchestrator state machine.

Covers cleanup on every exit path, degraded optional stages, fatal
publish and persistence failures, cancellation and concurrent jobs.
"""

import asyncio
import json
import logging
import os
import uuid

import pytest

from ingestion_fakes import (
    NO_ENGINE,
    FakeMetadataExtractor,
    FakeSegmenter,
    FakeThumbnailGenerator,
    RecordingStorage,
    make_request,
    make_session,
)
from video_ingest.core.logging import StructuredFormatter
from video_ingest.core.metrics import REGISTRY
from video_ingest.modules.ingestion.cancellation import CancellationToken
from video_ingest.modules.ingestion.exceptions import (
    IngestionCancelledError,
    IngestionError,
    PersistenceError,
    PublishError,
    ValidationError,
)
from video_ingest.modules.ingestion.models import (
    DegradedStage,
    IngestionJob,
    PipelineState,
    VideoMetadata,
    manifest_key,
    original_key,
    thumbnail_key,
)

HAPPY_PATH = [
    PipelineState.RECEIVED,
    PipelineState.METADATA_DONE,
    PipelineState.ARTIFACTS_READY,
    PipelineState.PUBLISHED,
    PipelineState.PERSISTED,
    PipelineState.CLEANED,
]


def metric(name: str, labels: dict = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def scratch_is_empty(scratch_root) -> bool:
    return not scratch_root.exists() or os.listdir(scratch_root) == []


def new_job(request) -> IngestionJob:
    return IngestionJob(
        owner_id=request.owner_id,
        original_filename=request.filename,
        content_type=request.content_type,
    )


class TestSuccessfulIngestion:
    """A job where every stage succeeds."""

    @pytest.mark.asyncio
    async def test_all_artifacts_published_and_record_created(self, build_orchestrator, scratch_root):
        storage = RecordingStorage()
        session = make_session()
        orchestrator = build_orchestrator(storage=storage, session=session)
        request = make_request()
        job = new_job(request)

        video = await orchestrator.run(request, job=job)

        assert video.id == job.job_id
        assert video.owner_id == request.owner_id
        assert video.original_key == original_key(job.job_id, ".mp4")
        assert video.original_url == storage.get_url(video.original_key)
        assert video.thumbnail_url == storage.get_url(thumbnail_key(job.job_id))
        assert video.manifest_url == storage.get_url(manifest_key(job.job_id))
        assert video.duration == 5.0
        assert (video.width, video.height) == (640, 360)
        assert video.mime_type == "video/mp4"
        assert video.file_size == len(storage.objects[video.original_key])
        assert video.hashtags == ["#summer", "#beach"]
        session.add.assert_called_once()
        session.commit.assert_awaited_once()
        assert job.degraded == []
        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_state_history_follows_happy_path(self, build_orchestrator):
        orchestrator = build_orchestrator()
        request = make_request()
        job = new_job(request)

        await orchestrator.run(request, job=job)

        assert job.history == HAPPY_PATH
        assert job.state == PipelineState.CLEANED

    @pytest.mark.asyncio
    async def test_thumbnail_offset_uses_probed_duration(self, build_orchestrator):
        thumbnails = FakeThumbnailGenerator()
        orchestrator = build_orchestrator(
            metadata_extractor=FakeMetadataExtractor(VideoMetadata(duration=42.0, width=1, height=1, format="mp4")),
            thumbnail_generator=thumbnails,
        )

        await orchestrator.run(make_request())

        assert thumbnails.calls == [42.0]

    @pytest.mark.asyncio
    async def test_persisted_outcome_counted(self, build_orchestrator):
        before = metric("ingestion_jobs_total", {"outcome": "persisted"})

        await build_orchestrator().run(make_request())

        assert metric("ingestion_jobs_total", {"outcome": "persisted"}) == before + 1

    @pytest.mark.asyncio
    async def test_unknown_content_type_defaults_to_octet_stream(self, build_orchestrator):
        storage = RecordingStorage()
        orchestrator = build_orchestrator(storage=storage)

        video = await orchestrator.run(make_request(content_type=None, filename="noext"))

        assert video.mime_type == "application/octet-stream"
        assert video.original_key.endswith("/original")
        assert storage.content_types[video.original_key] == "application/octet-stream"


class TestDegradedStages:
    """Optional stage failures leave null fields, never abort the job."""

    @pytest.mark.asyncio
    async def test_engine_unavailable_publishes_original_only(self, build_orchestrator, scratch_root):
        storage = RecordingStorage()
        thumbnails = FakeThumbnailGenerator()
        segmenter = FakeSegmenter()
        orchestrator = build_orchestrator(
            storage=storage,
            capabilities=NO_ENGINE,
            metadata_extractor=FakeMetadataExtractor(VideoMetadata.empty(), warning="ffprobe is not available"),
            thumbnail_generator=thumbnails,
            segmenter=segmenter,
        )
        request = make_request()
        job = new_job(request)

        video = await orchestrator.run(request, job=job)

        assert video.thumbnail_url is None
        assert video.manifest_url is None
        assert video.original_url
        assert list(storage.objects) == [video.original_key]
        assert (video.duration, video.width, video.height) == (0.0, 0, 0)
        assert video.container_format == "unknown"
        assert set(job.degraded) == {DegradedStage.METADATA, DegradedStage.THUMBNAIL, DegradedStage.HLS}
        # Capability flags short-circuit before any engine call
        assert thumbnails.calls == []
        assert segmenter.calls == 0
        assert job.history == HAPPY_PATH
        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_thumbnail_failure_degrades_only_thumbnail(self, build_orchestrator):
        orchestrator = build_orchestrator(thumbnail_generator=FakeThumbnailGenerator(fail=True))
        request = make_request()
        job = new_job(request)

        video = await orchestrator.run(request, job=job)

        assert video.thumbnail_url is None
        assert video.manifest_url is not None
        assert job.degraded == [DegradedStage.THUMBNAIL]

    @pytest.mark.asyncio
    async def test_transcode_failure_degrades_only_hls(self, build_orchestrator):
        before = metric("ingestion_degraded_stages_total", {"stage": "hls"})
        orchestrator = build_orchestrator(segmenter=FakeSegmenter(fail=True))
        request = make_request()
        job = new_job(request)

        video = await orchestrator.run(request, job=job)

        assert video.manifest_url is None
        assert video.thumbnail_url is not None
        assert job.degraded == [DegradedStage.HLS]
        assert metric("ingestion_degraded_stages_total", {"stage": "hls"}) == before + 1

    @pytest.mark.asyncio
    async def test_segment_upload_failure_omits_manifest(self, build_orchestrator):
        storage = RecordingStorage(fail=lambda key: key.endswith("segment_001.ts"))
        orchestrator = build_orchestrator(storage=storage)
        request = make_request()
        job = new_job(request)

        video = await orchestrator.run(request, job=job)

        assert video.manifest_url is None
        assert not any("/hls/" in key for key in storage.objects)
        assert DegradedStage.HLS in job.degraded

    @pytest.mark.asyncio
    async def test_thumbnail_upload_failure_omits_thumbnail(self, build_orchestrator):
        storage = RecordingStorage(fail=lambda key: key.endswith("thumbnail.jpg"))
        orchestrator = build_orchestrator(storage=storage)
        request = make_request()
        job = new_job(request)

        video = await orchestrator.run(request, job=job)

        assert video.thumbnail_url is None
        assert video.manifest_url is not None
        assert job.degraded == [DegradedStage.THUMBNAIL]


class TestFatalFailures:
    """Fatal errors abort the job, write nothing and still clean up."""

    @pytest.mark.asyncio
    async def test_original_upload_rejected(self, build_orchestrator, scratch_root):
        storage = RecordingStorage(fail=lambda key: "/original" in key)
        session = make_session()
        orchestrator = build_orchestrator(storage=storage, session=session)
        request = make_request()
        job = new_job(request)

        with pytest.raises(PublishError) as exc_info:
            await orchestrator.run(request, job=job)

        assert exc_info.value.fatal is True
        assert storage.objects == {}
        assert storage.uploads == []
        session.add.assert_not_called()
        session.commit.assert_not_called()
        assert job.history[-2:] == [PipelineState.FAILED, PipelineState.CLEANED]
        assert PipelineState.PUBLISHED not in job.history
        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_catalog_write_failure_leaves_artifacts(self, build_orchestrator, scratch_root):
        storage = RecordingStorage()
        session = make_session(fail_commit=True)
        orchestrator = build_orchestrator(storage=storage, session=session)
        orphans_before = metric("ingestion_orphaned_artifacts_total")
        request = make_request()
        job = new_job(request)

        with pytest.raises(PersistenceError) as exc_info:
            await orchestrator.run(request, job=job)

        session.rollback.assert_awaited_once()
        assert set(exc_info.value.orphaned_keys) == set(storage.objects)
        # thumbnail + 3 segments + manifest + original
        assert len(storage.objects) == 6
        assert storage.deleted == []
        assert metric("ingestion_orphaned_artifacts_total") == orphans_before + 6
        assert PipelineState.PUBLISHED in job.history
        assert PipelineState.PERSISTED not in job.history
        assert job.history[-2:] == [PipelineState.FAILED, PipelineState.CLEANED]
        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_empty_upload_rejected(self, build_orchestrator, scratch_root):
        storage = RecordingStorage()
        orchestrator = build_orchestrator(storage=storage)
        metadata = FakeMetadataExtractor()
        orchestrator.metadata_extractor = metadata

        with pytest.raises(ValidationError):
            await orchestrator.run(make_request(data=b""))

        assert metadata.calls == []
        assert storage.uploads == []
        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_oversized_upload_rejected(self, build_orchestrator, scratch_root):
        orchestrator = build_orchestrator(max_upload_bytes=10)

        with pytest.raises(ValidationError):
            await orchestrator.run(make_request(data=b"x" * 11))

        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, build_orchestrator, scratch_root):
        orchestrator = build_orchestrator(
            metadata_extractor=FakeMetadataExtractor(error=RuntimeError("boom")),
        )
        request = make_request()
        job = new_job(request)

        with pytest.raises(IngestionError) as exc_info:
            await orchestrator.run(request, job=job)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert job.history == [PipelineState.RECEIVED, PipelineState.FAILED, PipelineState.CLEANED]
        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_cancelled_job_publishes_nothing(self, build_orchestrator, scratch_root):
        storage = RecordingStorage()
        orchestrator = build_orchestrator(storage=storage)
        token = CancellationToken()
        token.cancel("client disconnected")
        before = metric("ingestion_jobs_total", {"outcome": "cancelled"})

        with pytest.raises(IngestionCancelledError):
            await orchestrator.run(make_request(), cancel_token=token)

        assert storage.uploads == []
        assert metric("ingestion_jobs_total", {"outcome": "cancelled"}) == before + 1
        assert scratch_is_empty(scratch_root)


class TestConcurrentJobs:
    """Independent uploads never share scratch space, keys or records."""

    @pytest.mark.asyncio
    async def test_two_uploads_by_different_users(self, build_orchestrator, scratch_root):
        storage = RecordingStorage()
        first = build_orchestrator(storage=storage)
        second = build_orchestrator(storage=storage)
        alice, bob = uuid.uuid4(), uuid.uuid4()

        video_a, video_b = await asyncio.gather(
            first.run(make_request(owner_id=alice, data=b"a" * 4096)),
            second.run(make_request(owner_id=bob, data=b"b" * 2048)),
        )

        assert video_a.id != video_b.id
        assert (video_a.owner_id, video_b.owner_id) == (alice, bob)
        keys_a = {k for k in storage.objects if k.startswith(f"videos/{video_a.id}/")}
        keys_b = {k for k in storage.objects if k.startswith(f"videos/{video_b.id}/")}
        assert keys_a and keys_b
        assert keys_a.isdisjoint(keys_b)
        assert keys_a | keys_b == set(storage.objects)
        assert storage.objects[video_a.original_key] == b"a" * 4096
        assert storage.objects[video_b.original_key] == b"b" * 2048
        assert scratch_is_empty(scratch_root)


class SlowThumbnailGenerator(FakeThumbnailGenerator):
    """Thumbnail stage that takes a while and records how it ended."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay
        self.finished = False
        self.was_cancelled = False

    async def extract_frame(self, source_path, scratch_dir, *, job_id, duration=0.0, cancel_token=None):
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.was_cancelled = True
            raise
        artifact = await super().extract_frame(
            source_path, scratch_dir, job_id=job_id, duration=duration, cancel_token=cancel_token
        )
        self.finished = True
        return artifact


class BrokenSegmenter(FakeSegmenter):
    def __init__(self, error: BaseException):
        super().__init__()
        self.error = error

    async def segment(self, source_path, scratch_dir, *, job_id, cancel_token=None):
        self.calls += 1
        raise self.error


class TestStageIsolation:
    """Thumbnail and HLS run side by side; neither outlives the job."""

    @pytest.mark.asyncio
    async def test_failing_stage_cancels_sibling_before_cleanup(self, build_orchestrator, scratch_root):
        thumbnails = SlowThumbnailGenerator(delay=0.3)
        orchestrator = build_orchestrator(
            thumbnail_generator=thumbnails,
            segmenter=BrokenSegmenter(RuntimeError("segmenter crashed")),
        )
        request = make_request()
        job = new_job(request)

        with pytest.raises(IngestionError):
            await orchestrator.run(request, job=job)

        assert thumbnails.was_cancelled
        assert scratch_is_empty(scratch_root)

        await asyncio.sleep(0.5)

        assert not thumbnails.finished
        assert scratch_is_empty(scratch_root)
        assert job.history[-2:] == [PipelineState.FAILED, PipelineState.CLEANED]

    @pytest.mark.asyncio
    async def test_os_error_in_segmenter_degrades_hls(self, build_orchestrator, scratch_root):
        thumbnails = SlowThumbnailGenerator(delay=0.1)
        orchestrator = build_orchestrator(
            thumbnail_generator=thumbnails,
            segmenter=BrokenSegmenter(OSError(28, "No space left on device")),
        )
        request = make_request()
        job = new_job(request)

        video = await orchestrator.run(request, job=job)

        assert thumbnails.finished
        assert video.manifest_url is None
        assert video.thumbnail_url is not None
        assert job.degraded == [DegradedStage.HLS]
        assert job.history == HAPPY_PATH
        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_os_error_in_thumbnail_degrades_thumbnail(self, build_orchestrator):
        class UnwritableThumbnailGenerator(FakeThumbnailGenerator):
            async def extract_frame(self, *args, **kwargs):
                raise PermissionError(13, "Permission denied")

        orchestrator = build_orchestrator(thumbnail_generator=UnwritableThumbnailGenerator())
        request = make_request()
        job = new_job(request)

        video = await orchestrator.run(request, job=job)

        assert video.thumbnail_url is None
        assert video.manifest_url is not None
        assert job.degraded == [DegradedStage.THUMBNAIL]


class TestLoggingAtInfo:
    """The pipeline logs at INFO in production; every record must be buildable."""

    @pytest.mark.asyncio
    async def test_successful_job_with_info_logging(self, build_orchestrator, caplog):
        caplog.set_level(logging.INFO)

        video = await build_orchestrator().run(make_request(filename="holiday.mov"))

        assert video.original_key.endswith("/original.mov")
        received = [r for r in caplog.records if r.getMessage() == "Ingestion job received"]
        assert len(received) == 1
        assert received[0].upload_filename == "holiday.mov"
        assert any(getattr(r, "state", None) == "persisted" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_failed_job_with_info_logging(self, build_orchestrator, scratch_root, caplog):
        caplog.set_level(logging.INFO)
        orchestrator = build_orchestrator(session=make_session(fail_commit=True))

        with pytest.raises(PersistenceError):
            await orchestrator.run(make_request())

        assert any(hasattr(r, "orphaned_keys") for r in caplog.records)
        assert scratch_is_empty(scratch_root)

    @pytest.mark.asyncio
    async def test_structured_formatter_renders_pipeline_records(self, build_orchestrator, caplog):
        caplog.set_level(logging.INFO)
        formatter = StructuredFormatter()

        await build_orchestrator().run(make_request())

        for record in caplog.records:
            json.loads(formatter.format(record))
