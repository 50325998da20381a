"""Still-frame thumbnail extraction."""

import logging
import uuid
from pathlib import Path
from typing import Optional, Union

from video_ingest.modules.ingestion.cancellation import CancellationToken
from video_ingest.modules.ingestion.exceptions import (
    EngineTimeoutError,
    EngineUnavailableError,
    ThumbnailError,
)
from video_ingest.modules.ingestion.ffmpeg import EngineCapabilities, FFmpegRunner
from video_ingest.modules.ingestion.models import (
    CONTENT_TYPE_THUMBNAIL,
    THUMBNAIL_FILENAME,
    ArtifactKind,
    DerivedArtifact,
    thumbnail_key,
)

logger = logging.getLogger(__name__)


class ThumbnailGenerator:
    """Grabs one frame at a fixed fraction of the duration and scales it.

    The offset depends only on the probed duration and the configured ratio,
    so the same source always yields the same frame at the same size.
    """

    def __init__(self, runner: FFmpegRunner, capabilities: EngineCapabilities):
        self.runner = runner
        self.capabilities = capabilities

    @property
    def size(self) -> tuple[int, int]:
        config = self.runner.config
        return config.thumbnail_width, config.thumbnail_height

    def offset_for(self, duration: float) -> float:
        """Seek position in seconds; 0 when the duration is unknown."""
        if duration <= 0:
            return 0.0
        return round(duration * self.runner.config.thumbnail_offset_ratio, 3)

    def build_command(
        self,
        source_path: Union[str, Path],
        output_path: Union[str, Path],
        offset: float,
    ) -> list[str]:
        width, height = self.size
        return [
            self.runner.config.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-ss", f"{offset:.3f}",
            "-i", str(source_path),
            "-frames:v", "1",
            "-vf", f"scale={width}:{height}",
            "-q:v", "2",
            str(output_path),
        ]

    async def extract_frame(
        self,
        source_path: Union[str, Path],
        scratch_dir: Union[str, Path],
        *,
        job_id: uuid.UUID,
        duration: float = 0.0,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DerivedArtifact:
        """Write ``thumbnail.jpg`` into the scratch directory.

        Raises:
            ThumbnailError: If no thumbnail could be produced
        """
        if not self.capabilities.thumbnail_available:
            raise ThumbnailError("ffmpeg is not available", stage="thumbnail")

        output_path = Path(scratch_dir) / THUMBNAIL_FILENAME
        offset = self.offset_for(duration)

        await self._grab(source_path, output_path, offset, cancel_token)
        if not self._has_output(output_path) and offset > 0:
            # Seeking past the last decodable frame yields nothing; use the first frame
            logger.info("No frame at %.3fs, retrying at start of stream", offset)
            await self._grab(source_path, output_path, 0.0, cancel_token)

        if not self._has_output(output_path):
            raise ThumbnailError("ffmpeg produced no thumbnail", stage="thumbnail")

        return DerivedArtifact(
            kind=ArtifactKind.THUMBNAIL,
            local_path=output_path,
            key=thumbnail_key(job_id),
            content_type=CONTENT_TYPE_THUMBNAIL,
        )

    async def _grab(
        self,
        source_path: Union[str, Path],
        output_path: Path,
        offset: float,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        try:
            result = await self.runner.run(
                self.build_command(source_path, output_path, offset),
                cancel_token=cancel_token,
                stage="thumbnail",
            )
        except (EngineTimeoutError, EngineUnavailableError) as e:
            raise ThumbnailError(e.message, stage="thumbnail") from e

        if not result.ok:
            raise ThumbnailError(
                f"ffmpeg exited with {result.returncode}: {result.stderr_tail}",
                stage="thumbnail",
            )

    @staticmethod
    def _has_output(path: Path) -> bool:
        return path.is_file() and path.stat().st_size > 0
