"""
Local filesystem media host for development.
Saves uploads under LOCAL_MEDIA_DIR instead of Azure Blob Storage.
"""
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from ..config import settings
from .provider import MediaHost, UploadedMedia, detect_media_kind, file_format, image_dimensions, canonical_key


class LocalMediaHost(MediaHost):
    """Local filesystem media host for development."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_media_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / clean_key

    def upload(self, data: bytes, *, folder: str, filename: str, content_type: str) -> UploadedMedia:
        key = canonical_key(folder, filename)
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        kind = detect_media_kind(content_type, filename) or "image"
        width, height = image_dimensions(data) if kind == "image" else (None, None)
        return UploadedMedia(
            secure_url=f"{settings.public_base_url}/media/local/{quote(key)}",
            storage_id=key,
            kind=kind,
            format=file_format(filename),
            width=width,
            height=height,
        )

    def delete(self, storage_id: str, resource_type: str = "image") -> None:
        path = self._get_path(storage_id)
        if path.exists():
            path.unlink()
