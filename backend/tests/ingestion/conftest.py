"""Fixtures for ingestion pipeline tests."""

from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock

import pytest

from ingestion_fakes import (
    FULL_CAPABILITIES,
    FakeMetadataExtractor,
    FakeSegmenter,
    FakeThumbnailGenerator,
    RecordingStorage,
    make_session,
)
from video_ingest.modules.ingestion.ffmpeg import EngineCapabilities
from video_ingest.modules.ingestion.orchestrator import IngestionOrchestrator
from video_ingest.modules.ingestion.publisher import ArtifactPublisher
from video_ingest.modules.ingestion.scratch import ScratchManager
from video_ingest.modules.video.service import CatalogWriter


@pytest.fixture
def scratch_root(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def build_orchestrator(scratch_root: Path):
    """Factory assembling an orchestrator from fakes; override any part by keyword."""

    def _build(
        *,
        storage: Optional[RecordingStorage] = None,
        capabilities: EngineCapabilities = FULL_CAPABILITIES,
        metadata_extractor: Optional[FakeMetadataExtractor] = None,
        thumbnail_generator: Optional[FakeThumbnailGenerator] = None,
        segmenter: Optional[FakeSegmenter] = None,
        session: Optional[MagicMock] = None,
        max_upload_bytes: Optional[int] = None,
    ) -> IngestionOrchestrator:
        return IngestionOrchestrator(
            scratch=ScratchManager(scratch_root),
            metadata_extractor=metadata_extractor or FakeMetadataExtractor(),
            thumbnail_generator=thumbnail_generator or FakeThumbnailGenerator(),
            segmenter=segmenter or FakeSegmenter(),
            publisher=ArtifactPublisher(storage or RecordingStorage(), max_workers=4, original_timeout=5.0),
            catalog_writer=CatalogWriter(session or make_session()),
            capabilities=capabilities,
            original_timeout=5.0,
            max_upload_bytes=max_upload_bytes,
        )

    return _build
