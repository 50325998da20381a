"""JWT bearer authentication for uploaders.

Uploaders are managed by the account service; this module only verifies
the access tokens it issues and exposes the uploader's id.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from video_ingest.core.config import settings

ACCESS_TOKEN_TYPE = "access"


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str  # Uploader ID
    exp: datetime
    iat: datetime
    type: str
    jti: str


class Uploader(BaseModel):
    """Authenticated principal attached to an upload."""

    id: uuid.UUID


def create_access_token(
    user_id: uuid.UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create an access token.

    Args:
        user_id: Uploader UUID
        expires_delta: Lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        str: Encoded token
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": now,
        "type": ACCESS_TOKEN_TYPE,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[TokenPayload]:
    """Decode and validate a JWT token.

    Expired tokens and bad signatures are rejected by ``jwt.decode``.

    Returns:
        TokenPayload | None: Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        return TokenPayload(
            sub=payload["sub"],
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            type=payload["type"],
            jti=payload["jti"],
        )
    except (JWTError, KeyError, TypeError, ValueError):
        return None


def get_uploader_id_from_token(token: str) -> Optional[uuid.UUID]:
    payload = decode_token(token)
    if payload is None or payload.type != ACCESS_TOKEN_TYPE:
        return None
    try:
        return uuid.UUID(payload.sub)
    except ValueError:
        return None


security = HTTPBearer()


async def get_current_uploader(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Uploader:
    """FastAPI dependency resolving the bearer token to an uploader.

    Raises:
        HTTPException: 401 if the token is invalid or expired
    """
    uploader_id = get_uploader_id_from_token(credentials.credentials)
    if uploader_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Uploader(id=uploader_id)
