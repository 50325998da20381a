"""Types used by the ingestion pipeline.

These live only for the duration of one upload request; the durable
catalog entity is ``video_ingest.modules.video.models.Video``.
"""

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional


class PipelineState(str, Enum):
    """Lifecycle of an ingestion job."""
    RECEIVED = "received"
    METADATA_DONE = "metadata_done"
    ARTIFACTS_READY = "artifacts_ready"
    PUBLISHED = "published"
    PERSISTED = "persisted"
    FAILED = "failed"
    CLEANED = "cleaned"


class ArtifactKind(str, Enum):
    """Kinds of files destined for object storage."""
    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"
    MANIFEST = "manifest"
    SEGMENT = "segment"


class DegradedStage(str, Enum):
    """Optional stages whose failure only omits their output."""
    METADATA = "metadata"
    THUMBNAIL = "thumbnail"
    HLS = "hls"


CONTENT_TYPE_THUMBNAIL = "image/jpeg"
CONTENT_TYPE_MANIFEST = "application/x-mpegURL"
CONTENT_TYPE_SEGMENT = "video/MP2T"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

THUMBNAIL_FILENAME = "thumbnail.jpg"
HLS_DIRNAME = "hls"
MANIFEST_FILENAME = "playlist.m3u8"
SEGMENT_FILENAME_PATTERN = "segment_%03d.ts"

_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


@dataclass(frozen=True)
class VideoMetadata:
    """Probe results for a source file.

    Zero values mean "unknown", which is a valid degraded state.
    """
    duration: float = 0.0
    width: int = 0
    height: int = 0
    format: str = "unknown"

    @classmethod
    def empty(cls) -> "VideoMetadata":
        return cls()


@dataclass(frozen=True)
class DerivedArtifact:
    """A local file plus where it goes in object storage."""
    kind: ArtifactKind
    local_path: Path
    key: str
    content_type: str
    order: int = 0


@dataclass(frozen=True)
class SegmentedOutput:
    """A playlist and the segments it references, in playlist order."""
    manifest: DerivedArtifact
    segments: tuple[DerivedArtifact, ...]


@dataclass
class ArtifactSet:
    """Everything produced for one job, ready to be published."""
    original: DerivedArtifact
    thumbnail: Optional[DerivedArtifact] = None
    hls: Optional[SegmentedOutput] = None


@dataclass(frozen=True)
class PublishedArtifacts:
    """Confirmed public URLs. Optional entries are None when not published."""
    original_key: str
    original_url: str
    thumbnail_url: Optional[str] = None
    manifest_url: Optional[str] = None
    uploaded_keys: tuple[str, ...] = ()


@dataclass
class IngestionRequest:
    """One upload as handed over by the HTTP layer."""
    owner_id: uuid.UUID
    stream: BinaryIO
    filename: str
    content_type: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


@dataclass
class IngestionJob:
    """State of a single upload attempt, owned by one orchestrator call."""
    owner_id: uuid.UUID
    original_filename: str
    content_type: str = DEFAULT_CONTENT_TYPE
    job_id: uuid.UUID = field(default_factory=uuid.uuid4)
    scratch_dir: Optional[Path] = None
    state: PipelineState = PipelineState.RECEIVED
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.RECEIVED])
    degraded: list[DegradedStage] = field(default_factory=list)
    file_size: int = 0

    @property
    def extension(self) -> str:
        return safe_extension(self.original_filename)

    def transition(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)

    def degrade(self, stage: DegradedStage) -> None:
        if stage not in self.degraded:
            self.degraded.append(stage)


def safe_extension(filename: str) -> str:
    """Lower-cased extension of an uploaded filename, or "" if unusable.

    The extension ends up in an object key, so anything other than a short
    alphanumeric suffix is dropped.
    """
    ext = Path(filename or "").suffix.lower()
    if _EXTENSION_RE.match(ext):
        return ext
    return ""


def video_prefix(job_id: uuid.UUID) -> str:
    return f"videos/{job_id}"


def original_key(job_id: uuid.UUID, extension: str) -> str:
    return f"{video_prefix(job_id)}/original{extension}"


def thumbnail_key(job_id: uuid.UUID) -> str:
    return f"{video_prefix(job_id)}/{THUMBNAIL_FILENAME}"


def manifest_key(job_id: uuid.UUID) -> str:
    return f"{video_prefix(job_id)}/{HLS_DIRNAME}/{MANIFEST_FILENAME}"


def segment_key(job_id: uuid.UUID, segment_name: str) -> str:
    return f"{video_prefix(job_id)}/{HLS_DIRNAME}/{segment_name}"
