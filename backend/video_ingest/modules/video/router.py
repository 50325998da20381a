"""Video API router.

Upload accepts one multipart file and runs the ingestion pipeline inline;
the response is the finished catalog record.
"""

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as FormValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from video_ingest.core.config import settings
from video_ingest.core.database import get_db
from video_ingest.modules.auth.jwt import Uploader, get_current_uploader
from video_ingest.modules.ingestion.cancellation import CancellationToken, watch_disconnect
from video_ingest.modules.ingestion.exceptions import IngestionError, ValidationError
from video_ingest.modules.ingestion.ffmpeg import EngineCapabilities
from video_ingest.modules.ingestion.models import IngestionRequest
from video_ingest.modules.ingestion.orchestrator import IngestionOrchestrator, create_orchestrator
from video_ingest.modules.video.schemas import ErrorResponse, VideoResponse, VideoUploadForm
from video_ingest.modules.video.service import VideoNotFoundError, VideoService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/videos", tags=["videos"])

NO_FILE_MESSAGE = "No video file provided"
PROCESSING_FAILED_MESSAGE = "Video processing failed"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(exclude_none=True),
    )


def get_engine_capabilities(request: Request) -> EngineCapabilities:
    """Capabilities probed once at startup."""
    capabilities = getattr(request.app.state, "engine_capabilities", None)
    if capabilities is None:
        return EngineCapabilities()
    return capabilities


def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    capabilities: EngineCapabilities = Depends(get_engine_capabilities),
) -> IngestionOrchestrator:
    return create_orchestrator(db, capabilities)


@router.post(
    "/upload",
    response_model=VideoResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
)
async def upload_video(
    request: Request,
    video: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    uploader: Uploader = Depends(get_current_uploader),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """Upload a video, derive its artifacts and create the catalog record."""
    if video is None or not video.filename:
        return _error(status.HTTP_400_BAD_REQUEST, NO_FILE_MESSAGE)
    if video.size is not None and video.size == 0:
        return _error(status.HTTP_400_BAD_REQUEST, "Uploaded file is empty")
    if video.size is not None and video.size > settings.MAX_UPLOAD_BYTES:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            f"File exceeds maximum size of {settings.MAX_UPLOAD_BYTES} bytes",
        )

    try:
        form = VideoUploadForm(title=title, description=description)
    except FormValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, e.errors()[0]["msg"])

    token = CancellationToken()
    watcher = asyncio.create_task(watch_disconnect(request.is_disconnected, token))
    try:
        record = await orchestrator.run(
            IngestionRequest(
                owner_id=uploader.id,
                stream=video.file,
                filename=video.filename,
                content_type=video.content_type,
                title=form.title,
                description=form.description,
            ),
            cancel_token=token,
        )
    except ValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, e.message)
    except IngestionError:
        # Already logged with its stage by the orchestrator
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, PROCESSING_FAILED_MESSAGE)
    finally:
        watcher.cancel()
        await video.close()

    return VideoResponse.model_validate(record)


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get a catalog record by ID."""
    service = VideoService(db)
    try:
        video = await service.get_video(video_id)
    except VideoNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return VideoResponse.model_validate(video)
