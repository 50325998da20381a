"""Exception hierarchy for the ingestion pipeline.

Soft errors (metadata, thumbnail, transcode, optional publish) are caught by
the orchestrator and turned into absent fields on the record. Fatal errors
abort the job and surface to the caller as a 500.
"""

from typing import Optional


class IngestionError(Exception):
    """Base exception for ingestion errors."""

    fatal: bool = True

    def __init__(self, message: str, *, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage


class ValidationError(IngestionError):
    """The request carried no usable file; no job is created."""


class ScratchError(IngestionError):
    """A scratch directory could not be allocated."""


class MetadataExtractionError(IngestionError):
    """Probing the source failed; metadata degrades to zero values."""

    fatal = False


class ThumbnailError(IngestionError):
    """No thumbnail could be produced."""

    fatal = False


class TranscodeError(IngestionError):
    """No HLS manifest and segments could be produced."""

    fatal = False


class EngineUnavailableError(IngestionError):
    """An external engine binary is missing or cannot be executed."""

    fatal = False


class EngineTimeoutError(IngestionError):
    """An external engine call exceeded its wall-clock budget."""

    fatal = False


class PublishError(IngestionError):
    """An artifact upload failed.

    Fatal only for the original; optional artifacts degrade instead.
    """

    def __init__(self, message: str, *, fatal: bool, key: Optional[str] = None):
        super().__init__(message, stage="publish")
        self.fatal = fatal
        self.key = key


class PersistenceError(IngestionError):
    """The catalog write failed after artifacts were published."""

    def __init__(self, message: str, *, orphaned_keys: tuple[str, ...] = ()):
        super().__init__(message, stage="persist")
        self.orphaned_keys = orphaned_keys


class IngestionCancelledError(IngestionError):
    """The client went away and the job was aborted cooperatively."""


class CleanupError(IngestionError):
    """The scratch directory could not be removed. Logged, never raised to callers."""

    fatal = False
