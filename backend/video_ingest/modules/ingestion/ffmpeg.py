"""FFmpeg/ffprobe engine access.

Binary paths and limits are held in an explicit ``EngineConfig``; what the
host can actually do is probed once at startup into ``EngineCapabilities``
so that stages check a flag instead of catching "binary not found" on every
call. Every engine invocation goes through ``FFmpegRunner.run``, which
enforces a wall-clock timeout and honours a cancellation token.
"""

import asyncio
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from video_ingest.core.config import settings
from video_ingest.modules.ingestion.cancellation import CancellationToken
from video_ingest.modules.ingestion.exceptions import (
    EngineTimeoutError,
    EngineUnavailableError,
    IngestionCancelledError,
)

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for the external transcoding engine."""
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    timeout_seconds: float = 300.0
    hls_segment_seconds: int = 10
    thumbnail_width: int = 320
    thumbnail_height: int = 640
    thumbnail_offset_ratio: float = 0.5

    @classmethod
    def from_settings(cls) -> "EngineConfig":
        return cls(
            ffmpeg_path=settings.FFMPEG_PATH,
            ffprobe_path=settings.FFPROBE_PATH,
            timeout_seconds=settings.SUBPROCESS_TIMEOUT_SECONDS,
            hls_segment_seconds=settings.HLS_SEGMENT_SECONDS,
            thumbnail_width=settings.THUMBNAIL_WIDTH,
            thumbnail_height=settings.THUMBNAIL_HEIGHT,
            thumbnail_offset_ratio=settings.THUMBNAIL_OFFSET_RATIO,
        )


@dataclass(frozen=True)
class EngineCapabilities:
    """What the installed engine can do, probed once per process."""
    ffmpeg_available: bool = False
    ffprobe_available: bool = False
    h264_available: bool = False
    ffmpeg_version: Optional[str] = None

    @property
    def probing_available(self) -> bool:
        return self.ffprobe_available

    @property
    def thumbnail_available(self) -> bool:
        return self.ffmpeg_available

    @property
    def transcoding_available(self) -> bool:
        return self.ffmpeg_available and self.h264_available

    def as_dict(self) -> dict[str, bool]:
        return {
            "probing_available": self.probing_available,
            "thumbnail_available": self.thumbnail_available,
            "transcoding_available": self.transcoding_available,
        }


@dataclass
class CommandResult:
    """Outcome of a finished engine process."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def stderr_tail(self) -> str:
        return self.stderr.strip()[-STDERR_TAIL_CHARS:]


def _run_quick(cmd: list[str], timeout: float) -> Optional[subprocess.CompletedProcess]:
    try:
        return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, check=False)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("Engine check %s failed: %s", cmd[0], e)
        return None


def probe_capabilities(config: EngineConfig, timeout: float = 10.0) -> EngineCapabilities:
    """Detect the engine binaries and the H.264 encoder.

    Args:
        config: Engine configuration with binary paths
        timeout: Per-check timeout in seconds

    Returns:
        EngineCapabilities describing the host
    """
    ffmpeg_bin = shutil.which(config.ffmpeg_path)
    ffprobe_bin = shutil.which(config.ffprobe_path)

    ffmpeg_available = False
    h264_available = False
    version = None

    if ffmpeg_bin:
        result = _run_quick([ffmpeg_bin, "-hide_banner", "-version"], timeout)
        if result is not None and result.returncode == 0:
            ffmpeg_available = True
            first_line = result.stdout.splitlines()[0] if result.stdout else ""
            version = first_line.strip() or None

            encoders = _run_quick([ffmpeg_bin, "-hide_banner", "-encoders"], timeout)
            h264_available = (
                encoders is not None
                and encoders.returncode == 0
                and "libx264" in encoders.stdout
            )

    ffprobe_available = False
    if ffprobe_bin:
        result = _run_quick([ffprobe_bin, "-hide_banner", "-version"], timeout)
        ffprobe_available = result is not None and result.returncode == 0

    capabilities = EngineCapabilities(
        ffmpeg_available=ffmpeg_available,
        ffprobe_available=ffprobe_available,
        h264_available=h264_available,
        ffmpeg_version=version,
    )
    logger.info("Engine capabilities probed", extra=capabilities.as_dict())
    return capabilities


class FFmpegRunner:
    """Runs engine commands as awaited subprocesses."""

    def __init__(self, config: EngineConfig):
        self.config = config

    async def run(
        self,
        cmd: Sequence[str],
        *,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
        stage: str = "engine",
    ) -> CommandResult:
        """Run a command to completion.

        Args:
            cmd: Command and arguments
            timeout: Wall-clock limit in seconds (defaults to the config value)
            cancel_token: Token that kills the process when cancelled
            stage: Pipeline stage name used in error messages

        Returns:
            CommandResult, whatever the exit status

        Raises:
            EngineUnavailableError: If the binary cannot be executed
            EngineTimeoutError: If the process exceeds the timeout
            IngestionCancelledError: If the token fires while running
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(stage)

        timeout = self.config.timeout_seconds if timeout is None else timeout
        program = Path(cmd[0]).name

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineUnavailableError(f"Cannot execute {program}: {e}", stage=stage) from e

        communicate = asyncio.ensure_future(process.communicate())
        waiters = {communicate}
        cancel_wait = None
        if cancel_token is not None:
            cancel_wait = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            await self._kill(process, communicate)
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if communicate not in done:
            await self._kill(process, communicate)
            if cancel_token is not None and cancel_token.cancelled:
                raise IngestionCancelledError(
                    f"{program} killed: {cancel_token.reason}", stage=stage
                )
            raise EngineTimeoutError(
                f"{program} exceeded {timeout:.0f}s timeout", stage=stage
            )

        stdout, stderr = communicate.result()
        return CommandResult(
            returncode=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process, communicate: asyncio.Future) -> None:
        """Kill a running process and reap it."""
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        try:
            await communicate
        except OSError:
            pass
