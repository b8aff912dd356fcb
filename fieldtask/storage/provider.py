import io
import os
import uuid
from datetime import datetime
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel
from slugify import slugify


IMAGE_FORMATS = ("jpeg", "jpg", "png", "gif", "webp")
VIDEO_FORMATS = ("mp4", "mov", "avi", "mkv", "webm")


class UploadedMedia(BaseModel):
    """What the media host hands back for one stored object."""

    secure_url: str
    storage_id: str
    kind: str  # image|video
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None


class MediaHost:
    def upload(self, data: bytes, *, folder: str, filename: str, content_type: str) -> UploadedMedia:
        raise NotImplementedError

    def delete(self, storage_id: str, resource_type: str = "image") -> None:
        raise NotImplementedError


def file_format(filename: str) -> str:
    return os.path.splitext(filename)[1].lstrip(".").lower()


def detect_media_kind(content_type: Optional[str], filename: str) -> Optional[str]:
    """Return image|video for an accepted file, None for anything else."""
    fmt = file_format(filename)
    ctype = (content_type or "").lower()
    if ctype.startswith("image/") and fmt in IMAGE_FORMATS:
        return "image"
    if ctype.startswith("video/") and fmt in VIDEO_FORMATS:
        return "video"
    return None


def image_dimensions(data: bytes) -> Tuple[Optional[int], Optional[int]]:
    try:
        with Image.open(io.BytesIO(data)) as im:
            return im.width, im.height
    except (UnidentifiedImageError, OSError):
        return None, None


def canonical_key(folder: str, original_name: str) -> str:
    today = datetime.utcnow().strftime("%Y-%m-%d")
    year = datetime.utcnow().strftime("%Y")
    safe_name = slugify(os.path.splitext(original_name)[0]) or "file"
    ext = os.path.splitext(original_name)[1].lower()
    # Short random suffix so repeated names within one day never collide
    suffix = uuid.uuid4().hex[:8]
    return f"fieldtask/{year}/{slugify(folder or 'misc')}/{today}_{safe_name}-{suffix}{ext}"
