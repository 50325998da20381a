"""Pydantic schemas for the video catalog API."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000


class VideoUploadForm(BaseModel):
    """Text fields accompanying an uploaded file."""

    title: Optional[str] = Field(None, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)


class VideoResponse(BaseModel):
    """Catalog record as returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    title: str
    description: Optional[str]
    hashtags: list[str]
    duration: float
    width: int
    height: int
    container_format: str
    mime_type: str
    file_size: int
    original_url: str
    thumbnail_url: Optional[str]
    manifest_url: Optional[str]
    created_at: Optional[datetime]


class ErrorResponse(BaseModel):
    """Body of every 4xx/5xx response from the upload API."""

    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Service health, including engine capabilities."""

    status: str
    database: bool
    probing_available: bool
    thumbnail_available: bool
    transcoding_available: bool
