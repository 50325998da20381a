"""Authentication module."""

from video_ingest.modules.auth.jwt import (
    TokenPayload,
    Uploader,
    create_access_token,
    decode_token,
    get_current_uploader,
    get_uploader_id_from_token,
)

__all__ = [
    "TokenPayload",
    "Uploader",
    "create_access_token",
    "decode_token",
    "get_current_uploader",
    "get_uploader_id_from_token",
]
