"""Ingestion pipeline orchestrator.

Drives one upload through the pipeline:

    RECEIVED -> METADATA_DONE -> ARTIFACTS_READY -> PUBLISHED -> PERSISTED -> CLEANED

Any fatal error moves the job to FAILED; every path ends in CLEANED with the
scratch directory removed. Metadata, thumbnail and HLS are optional stages:
their failures are recorded on the job as degraded and the record is written
without them.
"""

import asyncio
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from video_ingest.core.config import settings
from video_ingest.core.logging import bind_job_id, log_error, log_warning
from video_ingest.core.metrics import (
    INGESTION_DEGRADED_STAGES_TOTAL,
    INGESTION_JOBS_TOTAL,
    INGESTION_ORPHANED_ARTIFACTS_TOTAL,
    INGESTION_STAGE_DURATION_SECONDS,
)
from video_ingest.core.storage import Storage, get_storage
from video_ingest.core.tracing import create_span
from video_ingest.modules.ingestion.cancellation import CancellationToken
from video_ingest.modules.ingestion.exceptions import (
    IngestionCancelledError,
    IngestionError,
    PersistenceError,
    ScratchError,
    ThumbnailError,
    TranscodeError,
    ValidationError,
)
from video_ingest.modules.ingestion.ffmpeg import EngineCapabilities, EngineConfig, FFmpegRunner
from video_ingest.modules.ingestion.metadata import MetadataExtractor
from video_ingest.modules.ingestion.models import (
    DEFAULT_CONTENT_TYPE,
    ArtifactKind,
    ArtifactSet,
    DegradedStage,
    DerivedArtifact,
    IngestionJob,
    IngestionRequest,
    PipelineState,
    SegmentedOutput,
    VideoMetadata,
    original_key,
)
from video_ingest.modules.ingestion.publisher import ArtifactPublisher
from video_ingest.modules.ingestion.scratch import ScratchManager
from video_ingest.modules.ingestion.segmenter import Segmenter
from video_ingest.modules.ingestion.thumbnail import ThumbnailGenerator
from video_ingest.modules.video.models import Video
from video_ingest.modules.video.service import CatalogWriter

logger = logging.getLogger(__name__)

SPOOL_CHUNK_SIZE = 1024 * 1024


def spool_stream(stream: BinaryIO, destination: Path, max_bytes: Optional[int] = None) -> int:
    """Copy an upload stream to disk in chunks.

    Returns:
        Number of bytes written

    Raises:
        ValidationError: If the stream is larger than ``max_bytes``
    """
    written = 0
    with open(destination, "wb") as out:
        while True:
            chunk = stream.read(SPOOL_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if max_bytes is not None and written > max_bytes:
                raise ValidationError(
                    f"Upload exceeds maximum size of {max_bytes} bytes", stage="spool"
                )
            out.write(chunk)
    return written


class IngestionOrchestrator:
    """Runs the ingestion state machine for a single upload."""

    def __init__(
        self,
        *,
        scratch: ScratchManager,
        metadata_extractor: MetadataExtractor,
        thumbnail_generator: ThumbnailGenerator,
        segmenter: Segmenter,
        publisher: ArtifactPublisher,
        catalog_writer: CatalogWriter,
        capabilities: EngineCapabilities,
        original_timeout: float = 600.0,
        max_upload_bytes: Optional[int] = None,
    ):
        self.scratch = scratch
        self.metadata_extractor = metadata_extractor
        self.thumbnail_generator = thumbnail_generator
        self.segmenter = segmenter
        self.publisher = publisher
        self.catalog_writer = catalog_writer
        self.capabilities = capabilities
        self.original_timeout = original_timeout
        self.max_upload_bytes = max_upload_bytes

    async def run(
        self,
        request: IngestionRequest,
        cancel_token: Optional[CancellationToken] = None,
        job: Optional[IngestionJob] = None,
    ) -> Video:
        """Ingest one upload and return its catalog record.

        A caller that needs the job id or state history up front may pass its
        own ``job``; otherwise one is created from the request.

        Raises:
            ValidationError: If the upload is empty or too large
            IngestionCancelledError: If the token fired before publishing finished
            IngestionError: For any other fatal failure
        """
        token = cancel_token or CancellationToken()
        if job is None:
            job = IngestionJob(
                owner_id=request.owner_id,
                original_filename=request.filename or "",
                content_type=request.content_type or DEFAULT_CONTENT_TYPE,
            )
        outcome = "failed"

        with bind_job_id(job.job_id):
            logger.info(
                "Ingestion job received",
                extra={"state": job.state.value, "upload_filename": job.original_filename},
            )
            try:
                with self.scratch.scratch_directory(job.job_id) as scratch_dir:
                    job.scratch_dir = scratch_dir
                    video = await self._execute(job, request, token)
                outcome = "persisted"
                return video
            except ValidationError as e:
                outcome = "rejected"
                self._transition(job, PipelineState.FAILED)
                log_warning(logger, "Upload rejected", reason=e.message)
                raise
            except IngestionCancelledError as e:
                outcome = "cancelled"
                self._transition(job, PipelineState.FAILED)
                log_warning(logger, "Ingestion job cancelled", stage=e.stage, reason=e.message)
                raise
            except IngestionError as e:
                self._transition(job, PipelineState.FAILED)
                log_error(logger, "Ingestion job failed", e, stage=e.stage)
                raise
            except asyncio.CancelledError:
                outcome = "cancelled"
                self._transition(job, PipelineState.FAILED)
                raise
            except Exception as e:
                self._transition(job, PipelineState.FAILED)
                log_error(logger, "Unexpected ingestion failure", e, state=job.state.value)
                raise IngestionError(f"Unexpected failure: {e}", stage=job.state.value) from e
            finally:
                self._transition(job, PipelineState.CLEANED)
                INGESTION_JOBS_TOTAL.labels(outcome=outcome).inc()

    async def _execute(
        self,
        job: IngestionJob,
        request: IngestionRequest,
        token: CancellationToken,
    ) -> Video:
        source = await self._spool(job, request.stream)
        token.raise_if_cancelled("spool")

        with self._stage("metadata"):
            probe = await self.metadata_extractor.probe(source, cancel_token=token)
        if probe.degraded:
            self._degrade(job, DegradedStage.METADATA, probe.warning)
        metadata = probe.metadata
        self._transition(job, PipelineState.METADATA_DONE)
        token.raise_if_cancelled("metadata")

        thumbnail, hls = await self._derive(job, source, metadata, token)
        artifacts = ArtifactSet(
            original=DerivedArtifact(
                kind=ArtifactKind.ORIGINAL,
                local_path=source,
                key=original_key(job.job_id, job.extension),
                content_type=job.content_type,
            ),
            thumbnail=thumbnail,
            hls=hls,
        )
        self._transition(job, PipelineState.ARTIFACTS_READY)
        token.raise_if_cancelled("artifacts")

        with self._stage("publish"):
            published = await self.publisher.publish(job.job_id, artifacts, cancel_token=token)
        if thumbnail is not None and published.thumbnail_url is None:
            self._degrade(job, DegradedStage.THUMBNAIL, "thumbnail upload failed")
        if hls is not None and published.manifest_url is None:
            self._degrade(job, DegradedStage.HLS, "HLS upload incomplete")
        self._transition(job, PipelineState.PUBLISHED)

        # Past this point the artifacts are public; a late disconnect still persists
        with self._stage("persist"):
            try:
                video = await self.catalog_writer.persist(
                    job,
                    metadata,
                    published,
                    title=request.title,
                    description=request.description,
                )
            except PersistenceError as e:
                INGESTION_ORPHANED_ARTIFACTS_TOTAL.inc(len(e.orphaned_keys))
                logger.error(
                    "Catalog write failed, %d published objects are orphaned",
                    len(e.orphaned_keys),
                    extra={"orphaned_keys": list(e.orphaned_keys)},
                )
                raise
        self._transition(job, PipelineState.PERSISTED)
        return video

    async def _spool(self, job: IngestionJob, stream: BinaryIO) -> Path:
        source = job.scratch_dir / f"original{job.extension}"
        with self._stage("spool"):
            try:
                job.file_size = await asyncio.wait_for(
                    asyncio.to_thread(spool_stream, stream, source, self.max_upload_bytes),
                    timeout=self.original_timeout,
                )
            except asyncio.TimeoutError as e:
                raise IngestionError(
                    f"Receiving the upload exceeded {self.original_timeout:.0f}s timeout",
                    stage="spool",
                ) from e
            except OSError as e:
                raise ScratchError(f"Could not write upload to scratch: {e}", stage="spool") from e

        if job.file_size == 0:
            raise ValidationError("Uploaded file is empty", stage="spool")
        logger.info("Upload spooled", extra={"file_size": job.file_size})
        return source

    async def _derive(
        self,
        job: IngestionJob,
        source: Path,
        metadata: VideoMetadata,
        token: CancellationToken,
    ) -> tuple[Optional[DerivedArtifact], Optional[SegmentedOutput]]:
        """Run thumbnail and HLS concurrently.

        If either raises, the other is cancelled and awaited before the error
        propagates, so no engine process outlives the scratch directory.
        """
        tasks = [
            asyncio.ensure_future(self._thumbnail(job, source, metadata, token)),
            asyncio.ensure_future(self._segments(job, source, token)),
        ]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        thumbnail, hls = (task.result() for task in tasks)
        return thumbnail, hls

    async def _thumbnail(
        self,
        job: IngestionJob,
        source: Path,
        metadata: VideoMetadata,
        token: CancellationToken,
    ) -> Optional[DerivedArtifact]:
        if not self.capabilities.thumbnail_available:
            self._degrade(job, DegradedStage.THUMBNAIL, "ffmpeg is not available")
            return None
        with self._stage("thumbnail"):
            try:
                return await self.thumbnail_generator.extract_frame(
                    source,
                    job.scratch_dir,
                    job_id=job.job_id,
                    duration=metadata.duration,
                    cancel_token=token,
                )
            except ThumbnailError as e:
                self._degrade(job, DegradedStage.THUMBNAIL, e.message)
                return None
            except OSError as e:
                self._degrade(job, DegradedStage.THUMBNAIL, str(e))
                return None

    async def _segments(
        self,
        job: IngestionJob,
        source: Path,
        token: CancellationToken,
    ) -> Optional[SegmentedOutput]:
        if not self.capabilities.transcoding_available:
            self._degrade(job, DegradedStage.HLS, "H.264 transcoding is not available")
            return None
        with self._stage("hls"):
            try:
                return await self.segmenter.segment(
                    source,
                    job.scratch_dir,
                    job_id=job.job_id,
                    cancel_token=token,
                )
            except TranscodeError as e:
                self._degrade(job, DegradedStage.HLS, e.message)
                return None
            except OSError as e:
                self._degrade(job, DegradedStage.HLS, str(e))
                return None

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        with create_span(f"ingestion.{name}", attributes={"ingestion.stage": name}):
            try:
                yield
            finally:
                INGESTION_STAGE_DURATION_SECONDS.labels(stage=name).observe(
                    time.perf_counter() - started
                )

    @staticmethod
    def _transition(job: IngestionJob, state: PipelineState) -> None:
        previous = job.state
        job.transition(state)
        logger.info(
            "Ingestion job %s -> %s",
            previous.value,
            state.value,
            extra={"state": state.value},
        )

    @staticmethod
    def _degrade(job: IngestionJob, stage: DegradedStage, reason: Optional[str]) -> None:
        job.degrade(stage)
        INGESTION_DEGRADED_STAGES_TOTAL.labels(stage=stage.value).inc()
        log_warning(logger, "Optional stage degraded", stage=stage.value, reason=reason)


def create_orchestrator(
    session: AsyncSession,
    capabilities: EngineCapabilities,
    *,
    storage: Optional[Storage] = None,
    engine_config: Optional[EngineConfig] = None,
) -> IngestionOrchestrator:
    """Wire an orchestrator from settings for one request."""
    engine_config = engine_config or EngineConfig.from_settings()
    runner = FFmpegRunner(engine_config)
    return IngestionOrchestrator(
        scratch=ScratchManager(settings.SCRATCH_ROOT),
        metadata_extractor=MetadataExtractor(runner, capabilities),
        thumbnail_generator=ThumbnailGenerator(runner, capabilities),
        segmenter=Segmenter(runner, capabilities),
        publisher=ArtifactPublisher(
            storage or get_storage(),
            max_workers=settings.PUBLISH_MAX_WORKERS,
            original_timeout=settings.ORIGINAL_UPLOAD_TIMEOUT_SECONDS,
        ),
        catalog_writer=CatalogWriter(session),
        capabilities=capabilities,
        original_timeout=settings.ORIGINAL_UPLOAD_TIMEOUT_SECONDS,
        max_upload_bytes=settings.MAX_UPLOAD_BYTES,
    )
