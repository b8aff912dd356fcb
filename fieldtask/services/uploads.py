from typing import List, Optional, Sequence

import structlog

from ..config import settings
from ..errors import ExternalDependencyError, ValidationError
from ..schemas.common import IncomingFile
from ..storage.provider import MediaHost, UploadedMedia, detect_media_kind

logger = structlog.get_logger(__name__)


def validate_files(files: Optional[Sequence[IncomingFile]]) -> List[IncomingFile]:
    """Reject the batch before anything reaches the media host."""
    if not files:
        raise ValidationError("No files uploaded")
    files = list(files)
    if len(files) > settings.media_max_files:
        raise ValidationError(
            f"Too many files; at most {settings.media_max_files} per upload",
            details={"count": len(files)},
        )
    for f in files:
        if not f.data:
            raise ValidationError("Empty file", details={"filename": f.filename})
        if f.size > settings.media_max_upload_bytes:
            raise ValidationError(
                "File too large",
                details={"filename": f.filename, "size": f.size, "max": settings.media_max_upload_bytes},
            )
        if detect_media_kind(f.content_type, f.filename) is None:
            raise ValidationError(
                "Only image files (jpeg, jpg, png, gif, webp) and video files (mp4, mov, avi, mkv, webm) are allowed",
                details={"filename": f.filename, "content_type": f.content_type},
            )
    return files


def safe_delete(host: MediaHost, storage_id: Optional[str], resource_type: str = "image") -> bool:
    """Best-effort removal from the media host; failures are logged and swallowed."""
    if not storage_id:
        return False
    try:
        host.delete(storage_id, resource_type)
        return True
    except Exception as exc:
        logger.warning("media_host_delete_failed", storage_id=storage_id, error=str(exc))
        return False


def upload_files(host: MediaHost, files: Sequence[IncomingFile], folder: str) -> List[UploadedMedia]:
    """Upload every file or none: on the first failure the objects already stored are removed."""
    uploaded: List[UploadedMedia] = []
    for f in files:
        try:
            uploaded.append(host.upload(f.data, folder=folder, filename=f.filename, content_type=f.content_type))
        except Exception as exc:
            logger.error("media_host_upload_failed", filename=f.filename, folder=folder, error=str(exc))
            for done in uploaded:
                safe_delete(host, done.storage_id, done.kind)
            raise ExternalDependencyError(
                "Media upload failed", details={"filename": f.filename, "error": str(exc)}
            ) from exc
    logger.info("media_uploaded", folder=folder, count=len(uploaded))
    return uploaded
