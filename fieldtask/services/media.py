"""
Media attachment manager: before/after media on tasks, client visibility,
the reference-media snapshot taken at task creation, and the universal
image deletion entry point shared by sites, sections, tasks and feedback.

Deletion always asks the media host first and then mutates local state even
when the host call fails.
"""
import uuid
from typing import Iterable, List, Optional, Sequence, Union

import structlog
from sqlalchemy.orm import Session

from ..auth.principal import ADMIN, WORKER, Principal, ensure_task_access, require_roles
from ..errors import NotFoundError, ValidationError, ok, service_operation
from ..models.models import MEDIA_SLOTS, Site, Task, TaskMedia, TaskReferenceMedia, utcnow
from ..schemas.common import IncomingFile
from ..schemas.media import DeleteImageRequest
from ..schemas.tasks import TaskMediaResponse
from ..storage.provider import MediaHost
from .records import load_task
from .sites import find_section, load_site
from .uploads import safe_delete, upload_files, validate_files

logger = structlog.get_logger(__name__)


def snapshot_reference_media(site: Site, section_ids: Sequence[uuid.UUID]) -> List[TaskReferenceMedia]:
    """Copy the reference media of each section, in section order, tagged with its origin."""
    snapshot: List[TaskReferenceMedia] = []
    for sid in section_ids:
        section = find_section(site, sid)
        for ref in section.reference_media:
            snapshot.append(
                TaskReferenceMedia(
                    section_id=section.id,
                    url=ref.url,
                    storage_id=ref.storage_id,
                    caption=ref.caption,
                    media_kind=ref.media_kind,
                    format=ref.format,
                    duration=ref.duration,
                    qty=ref.qty,
                    description=ref.description,
                    uploaded_at=ref.uploaded_at,
                    position=len(snapshot),
                )
            )
    return snapshot


def _check_slot(slot: str) -> str:
    if slot not in MEDIA_SLOTS:
        raise ValidationError("Media type must be 'before' or 'after'", details={"slot": slot})
    return slot


def _find_media(task: Task, slot: str, media_id: uuid.UUID) -> TaskMedia:
    for m in task.media_in(slot):
        if m.id == media_id:
            return m
    raise NotFoundError("Media not found", details={"task_id": str(task.id), "slot": slot, "media_id": str(media_id)})


def _load_for_worker(db: Session, principal: Principal, task_id: uuid.UUID) -> Task:
    require_roles(principal, ADMIN, WORKER)
    task = load_task(db, task_id)
    ensure_task_access(principal, task)
    return task


@service_operation("Failed to upload media")
def add_media(
    db: Session,
    principal: Principal,
    host: MediaHost,
    task_id: uuid.UUID,
    slot: str,
    files: Optional[List[IncomingFile]],
    visible_default: bool = False,
):
    _check_slot(slot)
    task = _load_for_worker(db, principal, task_id)
    files = validate_files(files)
    uploaded = upload_files(host, files, folder="tasks")
    now = utcnow()
    position = len(task.media_in(slot))
    added = []
    for up in uploaded:
        media = TaskMedia(
            slot=slot,
            url=up.secure_url,
            storage_id=up.storage_id,
            thumbnail=up.secure_url,
            media_kind=up.kind,
            format=up.format,
            duration=up.duration,
            width=up.width,
            height=up.height,
            uploaded_at=now,
            uploaded_by=principal.id,
            is_visible_to_client=bool(visible_default),
            position=position,
        )
        position += 1
        task.media.append(media)
        added.append(media)
    db.flush()
    logger.info("task_media_added", task_id=str(task.id), slot=slot, count=len(added))
    return ok(
        [TaskMediaResponse.model_validate(m) for m in added],
        f"{len(added)} file(s) uploaded successfully",
        status_code=201,
    )


@service_operation("Failed to delete media")
def remove_media(db: Session, principal: Principal, host: MediaHost, task_id: uuid.UUID, slot: str, media_id: uuid.UUID):
    _check_slot(slot)
    task = _load_for_worker(db, principal, task_id)
    media = _find_media(task, slot, media_id)
    host_deleted = safe_delete(host, media.storage_id, media.media_kind)
    task.media.remove(media)
    db.flush()
    return ok({"media_id": media_id, "host_deleted": host_deleted}, "Media deleted")


@service_operation("Failed to toggle visibility")
def toggle_visibility(db: Session, principal: Principal, task_id: uuid.UUID, slot: str, media_id: uuid.UUID):
    require_roles(principal, ADMIN)
    _check_slot(slot)
    task = load_task(db, task_id)
    media = _find_media(task, slot, media_id)
    media.is_visible_to_client = not media.is_visible_to_client
    db.flush()
    state = "visible" if media.is_visible_to_client else "hidden"
    return ok(
        {"media_id": media.id, "is_visible_to_client": media.is_visible_to_client},
        f"Media is now {state} to client",
    )


@service_operation("Failed to update visibility")
def bulk_set_visibility(
    db: Session,
    principal: Principal,
    task_id: uuid.UUID,
    slot: str,
    media_ids: Iterable[uuid.UUID],
    value: bool,
):
    require_roles(principal, ADMIN)
    _check_slot(slot)
    task = load_task(db, task_id)
    wanted = set(media_ids or [])
    updated = 0
    for media in task.media_in(slot):
        if media.id in wanted:
            media.is_visible_to_client = bool(value)
            updated += 1
    db.flush()
    return ok({"updated_count": updated}, f"{updated} media item(s) updated")


@service_operation("Failed to delete image")
def delete_image(db: Session, principal: Principal, host: MediaHost, request: Union[DeleteImageRequest, dict]):
    require_roles(principal, ADMIN, WORKER)
    if isinstance(request, dict):
        request = DeleteImageRequest.model_validate(request)
    sid = request.storage_id
    missing = NotFoundError(
        "Image not found",
        details={"entity_type": request.entity_type, "entity_id": str(request.entity_id), "storage_id": sid},
    )

    shared_with_section = False

    # Resolve the owner and the exact record first so nothing is deleted on a bad request
    if request.entity_type == "site":
        site = load_site(db, request.entity_id)
        if site.cover_image_storage_id != sid:
            raise missing

        def apply():
            site.cover_image_url = None
            site.cover_image_storage_id = None

    elif request.entity_type == "section":
        section = find_section(load_site(db, request.site_id), request.entity_id)
        ref = next((r for r in section.reference_media if r.storage_id == sid), None)
        if ref is None:
            raise missing

        def apply():
            section.reference_media.remove(ref)

    elif request.entity_type == "task" and request.image_type == "reference":
        task = load_task(db, request.entity_id)
        ensure_task_access(principal, task)
        ref = next((r for r in task.reference_media if r.storage_id == sid), None)
        if ref is None:
            raise missing
        # Snapshots share the hosted object with their section
        shared_with_section = True

        def apply():
            task.reference_media.remove(ref)

    elif request.entity_type == "task":
        task = load_task(db, request.entity_id)
        ensure_task_access(principal, task)
        media = next((m for m in task.media_in(request.image_type) if m.storage_id == sid), None)
        if media is None:
            raise missing

        def apply():
            task.media.remove(media)

    else:
        task = load_task(db, request.entity_id)
        ensure_task_access(principal, task)
        if task.feedback_image_storage_id != sid:
            raise missing

        def apply():
            task.feedback_image_url = None
            task.feedback_image_storage_id = None

    host_deleted = False if shared_with_section else safe_delete(host, sid, request.resource_type)
    apply()
    db.flush()
    logger.info(
        "image_deleted",
        entity_type=request.entity_type,
        entity_id=str(request.entity_id),
        image_type=request.image_type,
        host_deleted=host_deleted,
    )
    return ok({"storage_id": sid, "host_deleted": host_deleted}, "Image deleted")
