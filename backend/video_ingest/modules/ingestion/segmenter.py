"""HLS segmentation of the source video.

Produces ``hls/playlist.m3u8`` plus ``hls/segment_NNN.ts`` files using a
fixed segment duration and an H.264 baseline profile that plays on every
HLS client.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional, Union

from video_ingest.modules.ingestion.cancellation import CancellationToken
from video_ingest.modules.ingestion.exceptions import (
    EngineTimeoutError,
    EngineUnavailableError,
    TranscodeError,
)
from video_ingest.modules.ingestion.ffmpeg import EngineCapabilities, FFmpegRunner
from video_ingest.modules.ingestion.models import (
    CONTENT_TYPE_MANIFEST,
    CONTENT_TYPE_SEGMENT,
    HLS_DIRNAME,
    MANIFEST_FILENAME,
    SEGMENT_FILENAME_PATTERN,
    ArtifactKind,
    DerivedArtifact,
    SegmentedOutput,
    manifest_key,
    segment_key,
)

logger = logging.getLogger(__name__)


def parse_playlist(text: str) -> list[str]:
    """Return the segment URIs of a media playlist, in playback order.

    Raises:
        TranscodeError: If the playlist is not HLS or a URI is not a plain
            file name in the playlist's directory
    """
    lines = [line.strip() for line in text.splitlines()]
    if not lines or lines[0] != "#EXTM3U":
        raise TranscodeError("Manifest is not an HLS playlist", stage="hls")

    uris = []
    for line in lines[1:]:
        if not line or line.startswith("#"):
            continue
        if "/" in line or "\\" in line or line in (".", ".."):
            raise TranscodeError(f"Unexpected segment reference: {line}", stage="hls")
        uris.append(line)
    return uris


class Segmenter:
    """Converts a source file into an HLS manifest and media segments."""

    def __init__(self, runner: FFmpegRunner, capabilities: EngineCapabilities):
        self.runner = runner
        self.capabilities = capabilities

    def build_command(self, source_path: Union[str, Path], hls_dir: Union[str, Path]) -> list[str]:
        seconds = self.runner.config.hls_segment_seconds
        hls_dir = Path(hls_dir)
        return [
            self.runner.config.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", str(source_path),
            "-c:v", "libx264",
            "-profile:v", "baseline",
            "-level", "3.0",
            "-pix_fmt", "yuv420p",
            "-force_key_frames", f"expr:gte(t,n_forced*{seconds})",
            "-c:a", "aac",
            "-ac", "2",
            "-start_number", "0",
            "-hls_time", str(seconds),
            "-hls_list_size", "0",
            "-hls_segment_filename", str(hls_dir / SEGMENT_FILENAME_PATTERN),
            "-f", "hls",
            str(hls_dir / MANIFEST_FILENAME),
        ]

    async def segment(
        self,
        source_path: Union[str, Path],
        scratch_dir: Union[str, Path],
        *,
        job_id: uuid.UUID,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SegmentedOutput:
        """Segment ``source_path`` into ``<scratch_dir>/hls``.

        Raises:
            TranscodeError: If transcoding is unavailable or produced an
                incomplete output
        """
        if not self.capabilities.transcoding_available:
            raise TranscodeError("H.264 transcoding is not available", stage="hls")

        hls_dir = Path(scratch_dir) / HLS_DIRNAME
        hls_dir.mkdir(exist_ok=True)

        try:
            result = await self.runner.run(
                self.build_command(source_path, hls_dir),
                cancel_token=cancel_token,
                stage="hls",
            )
        except (EngineTimeoutError, EngineUnavailableError) as e:
            raise TranscodeError(e.message, stage="hls") from e

        if not result.ok:
            raise TranscodeError(
                f"ffmpeg exited with {result.returncode}: {result.stderr_tail}",
                stage="hls",
            )

        manifest_path = hls_dir / MANIFEST_FILENAME
        if not manifest_path.is_file():
            raise TranscodeError("ffmpeg produced no manifest", stage="hls")

        segment_names = parse_playlist(manifest_path.read_text(encoding="utf-8"))
        if not segment_names:
            raise TranscodeError("Manifest references no segments", stage="hls")

        segments = []
        for index, name in enumerate(segment_names):
            path = hls_dir / name
            if not path.is_file() or path.stat().st_size == 0:
                raise TranscodeError(f"Segment {name} is missing or empty", stage="hls")
            segments.append(DerivedArtifact(
                kind=ArtifactKind.SEGMENT,
                local_path=path,
                key=segment_key(job_id, name),
                content_type=CONTENT_TYPE_SEGMENT,
                order=index,
            ))

        logger.info("Segmented source into %d HLS segments", len(segments))
        return SegmentedOutput(
            manifest=DerivedArtifact(
                kind=ArtifactKind.MANIFEST,
                local_path=manifest_path,
                key=manifest_key(job_id),
                content_type=CONTENT_TYPE_MANIFEST,
            ),
            segments=tuple(segments),
        )
