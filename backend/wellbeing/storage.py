"""
File storage for profile pictures and chat media.

Files live on local disk under MEDIA_ROOT/<bucket>/<path> and are served by
the app's /media mount, so the public URL mirrors the storage path.
"""

import logging
import os
import re
from pathlib import Path

from fastapi import HTTPException, UploadFile, status

logger = logging.getLogger(__name__)

MEDIA_ROOT = Path(os.getenv("MEDIA_ROOT", "./media"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

AVATARS_BUCKET = "avatars"
CHAT_MEDIA_BUCKET = "chat-media"

# content type -> extension the file is stored under
IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}
CHAT_MEDIA_TYPES = {
    **IMAGE_TYPES,
    "application/pdf": ".pdf",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
    "audio/webm": ".webm",
}
MAX_AVATAR_BYTES = 4 * 1024 * 1024
MAX_CHAT_MEDIA_BYTES = 20 * 1024 * 1024

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str) -> str:
    """Strip directories and unusual characters from an uploaded file name"""
    base = os.path.basename(name or "").strip()
    base = _UNSAFE_CHARS.sub("_", base).lstrip(".")
    return base or "upload"


def stored_filename(name: str, content_type: str, types: dict) -> str:
    """Safe file name whose extension matches the validated content type"""
    stem, _ = os.path.splitext(safe_filename(name))
    return f"{stem or 'upload'}{types[content_type]}"


class LocalStorage:
    def __init__(self, root: Path = MEDIA_ROOT, base_url: str = PUBLIC_BASE_URL):
        self.root = Path(root)
        self.base_url = base_url

    def _resolve(self, bucket: str, path: str) -> Path:
        bucket_root = (self.root / bucket).resolve()
        target = (bucket_root / path).resolve()
        if bucket_root not in target.parents:
            raise ValueError(f"Path escapes bucket: {path}")
        return target

    def upload(self, bucket: str, path: str, data: bytes, upsert: bool = False) -> str:
        """Write bytes to bucket/path and return the public URL"""
        target = self._resolve(bucket, path)
        if target.exists() and not upsert:
            raise FileExistsError(f"{bucket}/{path} already exists")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info(f"Stored {len(data)} bytes at {bucket}/{path}")
        return self.get_public_url(bucket, path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/media/{bucket}/{path}"

    def exists(self, bucket: str, path: str) -> bool:
        return self._resolve(bucket, path).exists()


async def read_upload(file: UploadFile, max_bytes: int, allowed_types=None) -> bytes:
    """Read an upload, enforcing content type and size limits"""
    if allowed_types is not None and file.content_type not in allowed_types:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unsupported file type"
        )

    contents = await file.read()
    if not contents:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty"
        )
    if len(contents) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File must be under {max_bytes // (1024 * 1024)}MB"
        )
    return contents


storage = LocalStorage()
