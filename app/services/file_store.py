"""Local file storage for uploaded source documents."""
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import aiofiles
from jose import JWTError, jwt

from app.core.config import settings
from app.core.errors import AccessDeniedError, NotFoundError, ValidationError


logger = logging.getLogger(__name__)

SIGNED_URL_PREFIX = "/documents/files/"


class LocalFileStore:
    """
    Store files under a root directory and hand out signed download URLs.

    Signed URLs let the remote processing venue fetch a source file without
    a user token.
    """

    def __init__(self, root: Optional[str] = None, secret_key: Optional[str] = None):
        self.root = Path(root or settings.UPLOAD_DIR).resolve()
        self.secret_key = secret_key or settings.SECRET_KEY
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        full_path = (self.root / path).resolve()
        if full_path != self.root and self.root not in full_path.parents:
            raise ValidationError(f"Path escapes storage root: {path}")
        return full_path

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        full_path = self._resolve(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(full_path, "wb") as buffer:
            await buffer.write(data)
        logger.info("Stored %s (%d bytes, %s)", path, len(data), content_type or "unknown type")
        return path

    async def download(self, path: str) -> bytes:
        full_path = self._resolve(path)
        if not full_path.exists():
            raise NotFoundError(f"File not found: {path}")
        async with aiofiles.open(full_path, "rb") as buffer:
            return await buffer.read()

    async def remove(self, path: str) -> bool:
        full_path = self._resolve(path)
        if not full_path.exists():
            return False
        os.remove(full_path)
        logger.info("Removed %s", path)
        return True

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def local_path(self, path: str) -> Path:
        return self._resolve(path)

    def create_signed_url(self, path: str, ttl_seconds: Optional[int] = None) -> str:
        ttl = ttl_seconds or settings.SIGNED_URL_TTL_SECONDS
        self._resolve(path)
        expire = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        token = jwt.encode({"sub": path, "exp": expire}, self.secret_key, algorithm=settings.ALGORITHM)
        return f"{SIGNED_URL_PREFIX}{path}?token={token}"

    def verify_signed_token(self, token: str) -> str:
        """Return the path a signed token grants access to."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[settings.ALGORITHM])
        except JWTError:
            raise AccessDeniedError("Invalid or expired file link")
        path = payload.get("sub")
        if not path:
            raise AccessDeniedError("Invalid or expired file link")
        return path


_file_store: Optional[LocalFileStore] = None


def get_file_store() -> LocalFileStore:
    global _file_store
    if _file_store is None:
        _file_store = LocalFileStore()
    return _file_store
