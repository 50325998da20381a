"""Per-job scratch directories.

Each ingestion job gets ``<root>/<job_id>``. Uniqueness of the job ID is
what keeps concurrent jobs apart; ``acquire`` refuses to reuse an existing
directory rather than share it.
"""

import logging
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from video_ingest.core.logging import log_error
from video_ingest.core.metrics import INGESTION_JOBS_IN_PROGRESS, SCRATCH_CLEANUP_FAILURES_TOTAL
from video_ingest.modules.ingestion.exceptions import CleanupError, ScratchError

logger = logging.getLogger(__name__)


class ScratchManager:
    """Allocates and destroys job-private working directories."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def acquire(self, job_id: uuid.UUID) -> Path:
        """Create a fresh directory for ``job_id``.

        Raises:
            ScratchError: If the directory already exists or cannot be created
        """
        path = self.root / str(job_id)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path.mkdir(exist_ok=False)
        except FileExistsError as e:
            raise ScratchError(f"Scratch directory already exists: {path}", stage="scratch") from e
        except OSError as e:
            raise ScratchError(f"Cannot create scratch directory {path}: {e}", stage="scratch") from e

        logger.debug("Acquired scratch directory %s", path)
        return path

    def release(self, path: Union[str, Path]) -> bool:
        """Recursively delete a scratch directory.

        Idempotent: a missing directory is a no-op. Failures are logged and
        counted but never raised.

        Returns:
            True if a directory was removed
        """
        path = Path(path)
        if not path.exists():
            return False

        try:
            shutil.rmtree(path)
        except OSError as e:
            SCRATCH_CLEANUP_FAILURES_TOTAL.inc()
            log_error(
                logger,
                "Failed to remove scratch directory",
                CleanupError(str(e), stage="cleanup"),
                scratch_dir=str(path),
            )
            return False

        logger.debug("Released scratch directory %s", path)
        return True

    @contextmanager
    def scratch_directory(self, job_id: uuid.UUID) -> Iterator[Path]:
        """Acquire a directory for the block and always release it."""
        path = self.acquire(job_id)
        INGESTION_JOBS_IN_PROGRESS.inc()
        try:
            yield path
        finally:
            INGESTION_JOBS_IN_PROGRESS.dec()
            self.release(path)
