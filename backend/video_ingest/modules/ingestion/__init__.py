"""Ingestion pipeline module.

The orchestrator lives in ``video_ingest.modules.ingestion.orchestrator``
and is imported from there directly.
"""

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
    IngestionRequest,
    PipelineState,
    VideoMetadata,
)

__all__ = [
    # Exceptions
    "IngestionError",
    "ValidationError",
    "PublishError",
    "PersistenceError",
    "IngestionCancelledError",
    # Models
    "PipelineState",
    "DegradedStage",
    "IngestionJob",
    "IngestionRequest",
    "VideoMetadata",
]
