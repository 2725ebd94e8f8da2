"""
Disk storage for uploaded media (status images/videos, profile pictures).

Files are written under UPLOAD_DIR and served by the static mount at
/uploads; the returned URL is that relative path.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from chatsync.config import settings
from chatsync.errors import ValidationError

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = "/uploads"


def upload_dir() -> Path:
    path = Path(settings.UPLOAD_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


def media_kind_for(content_type: Optional[str]) -> Optional[str]:
    """image/* -> image, video/* -> video, anything else -> None."""
    content_type = (content_type or "").lower()
    if content_type.startswith("image/"):
        return "image"
    if content_type.startswith("video/"):
        return "video"
    return None


async def save_upload(file: UploadFile, prefix: str) -> str:
    """
    Persist an uploaded file and return its public URL.

    Raises:
        ValidationError: empty file or larger than MAX_UPLOAD_MB
    """
    max_bytes = settings.MAX_UPLOAD_MB * 1024 * 1024
    # One byte past the cap is enough to tell an oversized file apart
    data = await file.read(max_bytes + 1)
    if not data:
        raise ValidationError("file is empty")
    if len(data) > max_bytes:
        raise ValidationError(f"File too large (max {settings.MAX_UPLOAD_MB}MB)")

    suffix = Path(file.filename or "").suffix.lower()
    name = f"{prefix}_{uuid.uuid4().hex}{suffix}"
    (upload_dir() / name).write_bytes(data)

    logger.info(f"Stored upload {name} ({len(data)} bytes)")
    return f"{UPLOAD_URL_PREFIX}/{name}"


def discard_upload(url: str) -> None:
    """Remove a stored upload again, given the URL save_upload returned."""
    if not url.startswith(f"{UPLOAD_URL_PREFIX}/"):
        return
    path = upload_dir() / url[len(UPLOAD_URL_PREFIX) + 1:]
    path.unlink(missing_ok=True)
    logger.info(f"Discarded upload {path.name}")
