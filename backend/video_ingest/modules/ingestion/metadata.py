"""Source metadata extraction with ffprobe.

Probe failures never abort a job: the extractor returns zero-valued
metadata together with a warning and the orchestrator carries on.
"""

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from video_ingest.modules.ingestion.cancellation import CancellationToken
from video_ingest.modules.ingestion.exceptions import (
    EngineTimeoutError,
    EngineUnavailableError,
    MetadataExtractionError,
)
from video_ingest.modules.ingestion.ffmpeg import EngineCapabilities, FFmpegRunner
from video_ingest.modules.ingestion.models import VideoMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """Metadata plus the reason it is degraded, if it is."""
    metadata: VideoMetadata
    warning: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.warning is not None


def _non_negative_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def _non_negative_int(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(number, 0)


def parse_probe_output(payload: dict) -> VideoMetadata:
    """Build VideoMetadata from ffprobe's JSON output.

    Duration and container come from ``format``; dimensions come from the
    first stream whose ``codec_type`` is ``video``.

    Raises:
        MetadataExtractionError: If the payload has no ``format`` section
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("format"), dict):
        raise MetadataExtractionError("ffprobe output has no format section", stage="metadata")

    fmt = payload["format"]
    width = height = 0
    for stream in payload.get("streams") or []:
        if isinstance(stream, dict) and stream.get("codec_type") == "video":
            width = _non_negative_int(stream.get("width"))
            height = _non_negative_int(stream.get("height"))
            break

    return VideoMetadata(
        duration=_non_negative_float(fmt.get("duration")),
        width=width,
        height=height,
        format=str(fmt.get("format_name") or "unknown"),
    )


class MetadataExtractor:
    """Probes uploaded files for duration, dimensions and container."""

    def __init__(self, runner: FFmpegRunner, capabilities: EngineCapabilities):
        self.runner = runner
        self.capabilities = capabilities

    def build_command(self, source_path: Union[str, Path]) -> list[str]:
        return [
            self.runner.config.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(source_path),
        ]

    async def probe(
        self,
        source_path: Union[str, Path],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ProbeResult:
        """Probe ``source_path``.

        Returns:
            ProbeResult; ``warning`` is set when metadata fell back to zeros
        """
        if not self.capabilities.probing_available:
            return self._degraded("ffprobe is not available")

        try:
            result = await self.runner.run(
                self.build_command(source_path),
                cancel_token=cancel_token,
                stage="metadata",
            )
        except (EngineTimeoutError, EngineUnavailableError) as e:
            return self._degraded(e.message)

        if not result.ok:
            return self._degraded(f"ffprobe exited with {result.returncode}: {result.stderr_tail}")

        try:
            metadata = parse_probe_output(json.loads(result.stdout))
        except json.JSONDecodeError as e:
            return self._degraded(f"ffprobe returned invalid JSON: {e}")
        except MetadataExtractionError as e:
            return self._degraded(e.message)

        logger.info(
            "Probed source metadata",
            extra={
                "duration": metadata.duration,
                "width": metadata.width,
                "height": metadata.height,
                "container": metadata.format,
            },
        )
        return ProbeResult(metadata=metadata)

    @staticmethod
    def _degraded(reason: str) -> ProbeResult:
        logger.warning("Metadata extraction degraded: %s", reason)
        return ProbeResult(metadata=VideoMetadata.empty(), warning=reason)
