import uuid
from datetime import datetime
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.principal import ADMIN, WORKER, Principal, require_roles
from ..errors import AuthorizationError, NotFoundError, ValidationError, ok, service_operation
from ..models.models import Client, SectionReferenceMedia, Site, SiteSection, utcnow
from ..schemas.common import IncomingFile
from ..schemas.sites import SectionCreate, SectionResponse, SectionUpdate, SiteCreate, SiteResponse
from ..storage.provider import MediaHost
from .records import expire_loaded
from .uploads import safe_delete, upload_files, validate_files

logger = structlog.get_logger(__name__)


def load_site(db: Session, site_id: uuid.UUID) -> Site:
    site = db.get(Site, site_id)
    if not site:
        raise NotFoundError("Site not found", details={"site_id": str(site_id)})
    return site


def find_section(site: Site, section_id: uuid.UUID) -> SiteSection:
    section = site.section(section_id)
    if not section:
        raise NotFoundError(
            "Section not found in site",
            details={"site_id": str(site.id), "section_id": str(section_id)},
        )
    return section


def _new_section(data: SectionCreate, sort_index: int) -> SiteSection:
    return SiteSection(sort_index=sort_index, **data.model_dump())


def update_section_last_task(
    db: Session,
    site_id: uuid.UUID,
    section_ids: Sequence[uuid.UUID],
    *,
    status: str,
    task_id: uuid.UUID,
    when: Optional[datetime] = None,
) -> int:
    """Stamp the latest task transition on every listed section of the site.

    Sections removed from the site since the task was created are skipped.
    """
    if not section_ids:
        return 0
    when = when or utcnow()
    values = {"last_task_status": status, "last_task_date": when, "last_task_id": task_id}
    if status == "completed":
        values["last_worked_on"] = when
    db.flush()
    result = db.execute(
        update(SiteSection)
        .where(SiteSection.site_id == site_id, SiteSection.id.in_(list(section_ids)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    expire_loaded(db, SiteSection, section_ids)
    if result.rowcount != len(set(section_ids)):
        logger.warning(
            "section_last_task_partial",
            site_id=str(site_id),
            task_id=str(task_id),
            expected=len(set(section_ids)),
            updated=result.rowcount,
        )
    return result.rowcount


@service_operation("Failed to create site")
def create_site(db: Session, principal: Principal, data: SiteCreate):
    require_roles(principal, ADMIN)
    if not db.get(Client, data.client_id):
        raise NotFoundError("Client not found", details={"client_id": str(data.client_id)})
    fields = data.model_dump(exclude={"sections"})
    site = Site(**fields)
    site.sections = [_new_section(s, i) for i, s in enumerate(data.sections)]
    db.add(site)
    db.flush()
    logger.info("site_created", site_id=str(site.id), sections=len(site.sections))
    return ok(SiteResponse.model_validate(site), "Site created", status_code=201)


@service_operation("Failed to fetch site")
def get_site(db: Session, principal: Principal, site_id: uuid.UUID):
    site = load_site(db, site_id)
    if principal.is_client and site.client_id != principal.id:
        raise AuthorizationError("Not authorized to access this site", details={"site_id": str(site_id)})
    return ok(SiteResponse.model_validate(site))


@service_operation("Failed to add section")
def add_section(db: Session, principal: Principal, site_id: uuid.UUID, data: SectionCreate):
    require_roles(principal, ADMIN)
    site = load_site(db, site_id)
    section = _new_section(data, len(site.sections))
    site.sections.append(section)
    db.flush()
    return ok(SectionResponse.model_validate(section), "Section added", status_code=201)


@service_operation("Failed to update section")
def update_section(db: Session, principal: Principal, site_id: uuid.UUID, section_id: uuid.UUID, changes: SectionUpdate):
    require_roles(principal, ADMIN, WORKER)
    site = load_site(db, site_id)
    section = find_section(site, section_id)
    for key, value in changes.model_dump(exclude_unset=True).items():
        if key == "name" and value is None:
            continue
        setattr(section, key, value)
    site.updated_at = utcnow()
    db.flush()
    return ok(SectionResponse.model_validate(section), "Section updated")


@service_operation("Failed to delete section")
def delete_section(db: Session, principal: Principal, host: MediaHost, site_id: uuid.UUID, section_id: uuid.UUID):
    require_roles(principal, ADMIN)
    site = load_site(db, site_id)
    section = find_section(site, section_id)
    for media in section.reference_media:
        safe_delete(host, media.storage_id, media.media_kind)
    site.sections.remove(section)
    db.flush()
    logger.info("section_deleted", site_id=str(site_id), section_id=str(section_id))
    return ok({"site_id": site_id, "section_id": section_id}, "Section deleted")


@service_operation("Failed to upload reference media")
def add_section_reference_media(
    db: Session,
    principal: Principal,
    host: MediaHost,
    site_id: uuid.UUID,
    section_id: uuid.UUID,
    files: List[IncomingFile],
    captions: Optional[List[Optional[str]]] = None,
    description: Optional[str] = None,
):
    require_roles(principal, ADMIN, WORKER)
    site = load_site(db, site_id)
    section = find_section(site, section_id)
    files = validate_files(files)
    captions = captions or []
    uploaded = upload_files(host, files, folder="sections")
    start = len(section.reference_media)
    for i, up in enumerate(uploaded):
        section.reference_media.append(
            SectionReferenceMedia(
                url=up.secure_url,
                storage_id=up.storage_id,
                caption=captions[i] if i < len(captions) else None,
                media_kind=up.kind,
                format=up.format,
                duration=up.duration,
                description=description,
                sort_index=start + i,
            )
        )
    db.flush()
    return ok(SectionResponse.model_validate(section), f"{len(uploaded)} file(s) uploaded", status_code=201)


@service_operation("Failed to set cover image")
def set_cover_image(db: Session, principal: Principal, host: MediaHost, site_id: uuid.UUID, file: IncomingFile):
    require_roles(principal, ADMIN)
    site = load_site(db, site_id)
    (file,) = validate_files([file])
    if not file.content_type.lower().startswith("image/"):
        raise ValidationError("Cover must be an image", details={"filename": file.filename})
    (uploaded,) = upload_files(host, [file], folder="sites")
    previous = site.cover_image_storage_id
    site.cover_image_url = uploaded.secure_url
    site.cover_image_storage_id = uploaded.storage_id
    if previous:
        safe_delete(host, previous)
    db.flush()
    return ok(SiteResponse.model_validate(site), "Cover image updated")
