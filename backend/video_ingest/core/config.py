"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Video Ingest API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database - REQUIRED
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 10

    # Security - REQUIRED (no defaults for sensitive values)
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # CORS
    CORS_ORIGINS: list[str] = []

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = "videos"
    STORAGE_REGION: str = "us-east-1"
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True
    STORAGE_TIMEOUT_SECONDS: float = 60.0

    # Public URL base for published objects; falls back to the AWS virtual-host style
    STORAGE_PUBLIC_ENDPOINT: Optional[str] = None

    # CDN Configuration (optional, for any backend)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    # Ingestion pipeline
    SCRATCH_ROOT: str = "/tmp/video_ingest"
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    HLS_SEGMENT_SECONDS: int = 10
    SUBPROCESS_TIMEOUT_SECONDS: float = 300.0
    ORIGINAL_UPLOAD_TIMEOUT_SECONDS: float = 600.0
    THUMBNAIL_WIDTH: int = 320
    THUMBNAIL_HEIGHT: int = 640
    THUMBNAIL_OFFSET_RATIO: float = 0.5
    PUBLISH_MAX_WORKERS: int = 4
    MAX_UPLOAD_BYTES: int = 2 * 1024 * 1024 * 1024  # 2 GB

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
