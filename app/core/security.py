"""Bearer token verification.

Tokens are issued elsewhere; this service only verifies them and reads the
user id from the ``sub`` claim.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.config import settings
from app.core.errors import AuthError


logger = logging.getLogger(__name__)

# JWT bearer token scheme; missing credentials are handled per route
security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(hours=24)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise AuthError("Could not validate credentials")


def verify_credentials(token: str) -> uuid.UUID:
    """Return the user id carried by a bearer token."""
    payload = decode_token(token)
    user_id = payload.get("sub")
    if user_id is None:
        raise AuthError("Invalid authentication credentials")
    try:
        return uuid.UUID(str(user_id))
    except ValueError:
        raise AuthError("Invalid authentication credentials")


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> uuid.UUID:
    """
    Dependency returning the authenticated user's id.

    Usage:
        @router.get("/protected")
        def protected_route(user_id: uuid.UUID = Depends(get_current_user_id)):
            return {"user_id": str(user_id)}
    """
    if credentials is None:
        raise AuthError("You must be logged in to perform this action")
    return verify_credentials(credentials.credentials)


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[uuid.UUID]:
    """Like get_current_user_id, but anonymous (or invalid) callers get None."""
    if credentials is None:
        return None
    try:
        return verify_credentials(credentials.credentials)
    except AuthError:
        logger.debug("Ignoring invalid bearer token on anonymous-capable route")
        return None
