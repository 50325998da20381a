"""Video Ingest backend.

Accepts video uploads, derives playback artifacts and records them in the
catalog.

Modules:
    - core: Configuration, database, storage, logging, metrics, tracing
    - modules.auth: Bearer token verification for uploaders
    - modules.ingestion: Scratch space, ffmpeg stages, publishing, orchestration
    - modules.video: Catalog model, API router and orphan reconciliation
"""

__version__ = "0.1.0"
