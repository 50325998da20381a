"""Artifact publishing to object storage.

Upload order for a job:

1. the original, alone; any failure here is fatal and nothing else is sent
2. the thumbnail and all HLS segments, concurrently on a bounded pool
3. the manifest, only once every segment it references is confirmed

A failed thumbnail or manifest upload degrades that artifact only. If a
segment fails the manifest is never uploaded and the segments that did make
it are deleted again, since nothing can reference them.
"""

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional

from video_ingest.core.metrics import ARTIFACT_UPLOADS_TOTAL, INGESTION_ORPHANED_ARTIFACTS_TOTAL
from video_ingest.core.storage import Storage, StorageResult
from video_ingest.modules.ingestion.cancellation import CancellationToken
from video_ingest.modules.ingestion.exceptions import IngestionCancelledError, PublishError
from video_ingest.modules.ingestion.models import (
    ArtifactSet,
    DerivedArtifact,
    PublishedArtifacts,
)

logger = logging.getLogger(__name__)


class ArtifactPublisher:
    """Uploads a job's artifacts and reports their confirmed URLs."""

    def __init__(
        self,
        storage: Storage,
        *,
        max_workers: int = 4,
        original_timeout: float = 600.0,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.storage = storage
        self.max_workers = max_workers
        self.original_timeout = original_timeout

    async def publish(
        self,
        job_id: uuid.UUID,
        artifacts: ArtifactSet,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PublishedArtifacts:
        """Publish everything in ``artifacts``.

        Returns:
            PublishedArtifacts; optional URLs are None when not published

        Raises:
            PublishError: If the original could not be uploaded (fatal)
            IngestionCancelledError: If cancelled between upload phases
        """
        loop = asyncio.get_running_loop()
        pool = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=f"publish-{str(job_id)[:8]}",
        )
        uploaded: list[str] = []

        try:
            original = artifacts.original
            original_upload = asyncio.ensure_future(self._upload(loop, pool, original))
            try:
                result = await asyncio.wait_for(
                    asyncio.shield(original_upload),
                    timeout=self.original_timeout,
                )
            except asyncio.TimeoutError as e:
                self._discard_when_done(loop, original_upload, original.key)
                raise PublishError(
                    f"Original upload exceeded {self.original_timeout:.0f}s timeout",
                    fatal=True,
                    key=original.key,
                ) from e

            if not result.success:
                raise PublishError(
                    f"Original upload failed: {result.error_message}",
                    fatal=True,
                    key=original.key,
                )
            uploaded.append(original.key)
            original_url = result.url

            await self._checkpoint(cancel_token, loop, pool, uploaded)

            optional: list[DerivedArtifact] = []
            if artifacts.thumbnail is not None:
                optional.append(artifacts.thumbnail)
            if artifacts.hls is not None:
                optional.extend(artifacts.hls.segments)

            results = await asyncio.gather(
                *(self._upload(loop, pool, artifact) for artifact in optional)
            )
            by_key = {r.key: r for r in results}
            uploaded.extend(r.key for r in results if r.success)

            thumbnail_url = None
            if artifacts.thumbnail is not None:
                thumb_result = by_key[artifacts.thumbnail.key]
                if thumb_result.success:
                    thumbnail_url = thumb_result.url
                else:
                    logger.warning(
                        "Thumbnail upload failed, publishing without it: %s",
                        thumb_result.error_message,
                    )

            await self._checkpoint(cancel_token, loop, pool, uploaded)

            manifest_url = None
            if artifacts.hls is not None:
                segment_keys = [s.key for s in artifacts.hls.segments]
                failed = [k for k in segment_keys if not by_key[k].success]
                if failed:
                    logger.warning(
                        "%d of %d segments failed to upload, manifest not published",
                        len(failed), len(segment_keys),
                    )
                    succeeded = [k for k in segment_keys if by_key[k].success]
                    await self._discard(loop, pool, succeeded)
                    uploaded = [k for k in uploaded if k not in succeeded]
                else:
                    manifest = artifacts.hls.manifest
                    manifest_result = await self._upload(loop, pool, manifest)
                    if manifest_result.success:
                        uploaded.append(manifest.key)
                        manifest_url = manifest_result.url
                    else:
                        logger.warning(
                            "Manifest upload failed, publishing without HLS: %s",
                            manifest_result.error_message,
                        )

            return PublishedArtifacts(
                original_key=original.key,
                original_url=original_url,
                thumbnail_url=thumbnail_url,
                manifest_url=manifest_url,
                uploaded_keys=tuple(uploaded),
            )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    async def _upload(
        self,
        loop: asyncio.AbstractEventLoop,
        pool: ThreadPoolExecutor,
        artifact: DerivedArtifact,
    ) -> StorageResult:
        try:
            result = await loop.run_in_executor(
                pool,
                self.storage.upload,
                str(artifact.local_path),
                artifact.key,
                artifact.content_type,
            )
        except Exception as e:
            result = StorageResult(success=False, key=artifact.key, url="", error_message=str(e))

        ARTIFACT_UPLOADS_TOTAL.labels(
            kind=artifact.kind.value,
            result="success" if result.success else "failure",
        ).inc()
        if not result.success:
            logger.warning(
                "Upload of %s failed",
                artifact.key,
                extra={"kind": artifact.kind.value, "error": result.error_message},
            )
        return result

    async def _discard(
        self,
        loop: asyncio.AbstractEventLoop,
        pool: ThreadPoolExecutor,
        keys: Iterable[str],
    ) -> None:
        """Best-effort delete of objects nothing will reference."""
        keys = list(keys)
        if not keys:
            return
        deleted = await asyncio.gather(
            *(loop.run_in_executor(pool, self.storage.delete, key) for key in keys)
        )
        leftover = [key for key, ok in zip(keys, deleted) if not ok]
        if leftover:
            logger.error(
                "Could not delete %d unreferenced objects",
                len(leftover),
                extra={"keys": leftover},
            )

    def _discard_when_done(
        self,
        loop: asyncio.AbstractEventLoop,
        upload: "asyncio.Future[StorageResult]",
        key: str,
    ) -> None:
        """Delete an object whose upload outlived its timeout, once it lands.

        The worker thread cannot be interrupted, so the upload may still
        succeed after the job has failed.
        """
        def delete_late_object() -> None:
            if self.storage.delete(key):
                logger.warning("Deleted %s, which landed after its upload timed out", key)
                return
            INGESTION_ORPHANED_ARTIFACTS_TOTAL.inc()
            logger.error(
                "Could not delete %s after its upload timed out",
                key,
                extra={"orphaned_keys": [key]},
            )

        def on_done(future: "asyncio.Future[StorageResult]") -> None:
            if future.cancelled() or not future.result().success:
                return
            loop.run_in_executor(None, delete_late_object)

        upload.add_done_callback(on_done)

    async def _checkpoint(
        self,
        cancel_token: Optional[CancellationToken],
        loop: asyncio.AbstractEventLoop,
        pool: ThreadPoolExecutor,
        uploaded: list[str],
    ) -> None:
        if cancel_token is None or not cancel_token.cancelled:
            return
        # Nothing has been persisted yet, so these objects are unreachable
        await self._discard(loop, pool, uploaded)
        raise IngestionCancelledError(
            f"Publishing cancelled: {cancel_token.reason}", stage="publish"
        )
