"""
Task lifecycle engine.

States: pending -> assigned -> in-progress -> completed, with a side branch
to rejected and an administrative review state. Every status change is a
compare-and-swap UPDATE on the expected prior status so two concurrent
callers can never both win the same transition; the cascades that follow
(inventory, counters, section stamps) run in the same session transaction
and are rolled back together by ``service_operation`` on any failure.
"""
import uuid
from datetime import datetime
from typing import Iterable, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.principal import ADMIN, CLIENT, WORKER, Principal, ensure_task_access, require_roles
from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError, ok, service_operation
from ..models.models import (
    TASK_STATUSES,
    Client,
    InventoryItem,
    Site,
    SiteSection,
    Task,
    TaskMaterial,
    TaskSection,
    User,
    utcnow,
)
from ..schemas.common import GPSFix
from ..schemas.tasks import ReviewDecision, TaskCreate, TaskResponse, TaskUpdate
from ..storage.provider import MediaHost
from .inventory import deduct_stock
from .media import snapshot_reference_media
from .notifications import notify_task_assignment
from .records import expire_loaded, load_client, load_task, load_worker
from .sites import load_site, update_section_last_task
from .uploads import safe_delete

logger = structlog.get_logger(__name__)


def _increment(db: Session, model, row_id: Optional[uuid.UUID], column: str, **extra) -> None:
    if row_id is None:
        return
    col = getattr(model, column)
    db.execute(
        update(model)
        .where(model.id == row_id)
        .values({column: col + 1, **extra})
        .execution_options(synchronize_session=False)
    )
    expire_loaded(db, model, [row_id])


def _transition(db: Session, task: Task, allowed: Iterable[str], new_status: str, **values) -> Task:
    """Move the task to ``new_status`` only if it is still in one of ``allowed``."""
    allowed = tuple(allowed)
    db.flush()
    result = db.execute(
        update(Task)
        .where(Task.id == task.id, Task.status.in_(allowed))
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.refresh(task)
        raise ConflictError(
            f"Cannot move task from '{task.status}' to '{new_status}'",
            details={"task_id": str(task.id), "status": task.status, "target": new_status},
        )
    db.refresh(task)
    logger.info("task_transition", task_id=str(task.id), to=new_status)
    return task


def _validate_sections(db: Session, site: Site, section_ids) -> None:
    for sid in section_ids:
        if site.section(sid) is not None:
            continue
        if db.get(SiteSection, sid) is not None:
            raise ValidationError(
                "Section does not belong to the selected site",
                details={"site_id": str(site.id), "section_id": str(sid)},
            )
        raise NotFoundError("Section not found", details={"section_id": str(sid)})


def _ensure_worker_caller(principal: Principal, task: Task) -> None:
    require_roles(principal, ADMIN, WORKER)
    ensure_task_access(principal, task)


def _respond(task: Task, principal: Principal, message: str = "OK", status_code: int = 200):
    return ok(TaskResponse.from_task(task, client_view=principal.is_client), message, status_code=status_code)


def _apply_fix(task: Task, prefix: str, fix: Optional[GPSFix], when: datetime) -> None:
    if fix is None:
        return
    setattr(task, f"{prefix}_latitude", fix.latitude)
    setattr(task, f"{prefix}_longitude", fix.longitude)
    setattr(task, f"{prefix}_recorded_at", fix.recorded_at or when)


def assign_worker(db: Session, task: Task, worker_id: uuid.UUID) -> Task:
    """pending -> assigned. Stock for every material line is deducted exactly here."""
    if task.worker_id is not None:
        raise ConflictError("Task already has a worker assigned", details={"task_id": str(task.id)})
    worker = load_worker(db, worker_id)
    _transition(db, task, ("pending",), "assigned", worker_id=worker.id)
    for line in task.materials:
        if line.inventory_item_id is None:
            continue
        deduct_stock(db, line.inventory_item_id, line.quantity)
    db.flush()
    notify_task_assignment(db, worker, task)
    return task


def reject(db: Session, task: Task, reason: Optional[str] = None) -> Task:
    now = utcnow()
    _transition(db, task, [s for s in TASK_STATUSES if s != "rejected"], "rejected")
    if reason:
        task.review_comments = reason
    update_section_last_task(db, task.site_id, task.section_ids, status="rejected", task_id=task.id, when=now)
    db.flush()
    return task


@service_operation("Failed to create task")
def create_task(db: Session, principal: Principal, data: TaskCreate):
    require_roles(principal, ADMIN)
    if isinstance(data, dict):
        data = TaskCreate.model_validate(data)
    site = load_site(db, data.site_id)
    _validate_sections(db, site, data.section_ids)
    client = load_client(db, data.client_id or site.client_id)

    materials = []
    for pos, line in enumerate(data.materials):
        item = db.get(InventoryItem, line.inventory_item_id)
        if not item:
            raise NotFoundError("Inventory item not found", details={"item_id": str(line.inventory_item_id)})
        materials.append(
            TaskMaterial(
                inventory_item_id=item.id,
                name=line.name or item.name,
                quantity=line.quantity,
                unit=line.unit or item.unit,
                position=pos,
            )
        )

    task = Task(
        title=data.title,
        description=data.description,
        notes=data.notes,
        site_id=site.id,
        client_id=client.id,
        branch_id=data.branch_id or site.branch_id,
        status="pending",
        priority=data.priority,
        category=data.category,
        scheduled_date=data.scheduled_date,
        estimated_duration=data.estimated_duration,
        cost_labor=data.cost_labor,
        cost_materials=data.cost_materials,
    )
    task.section_links = [TaskSection(section_id=sid, position=i) for i, sid in enumerate(data.section_ids)]
    task.reference_media = snapshot_reference_media(site, data.section_ids)
    task.materials = materials
    db.add(task)
    db.flush()

    _increment(db, Client, client.id, "total_tasks")
    _increment(db, Site, site.id, "total_tasks")

    if data.worker_id is not None:
        assign_worker(db, task, data.worker_id)

    logger.info("task_created", task_id=str(task.id), site_id=str(site.id), status=task.status)
    return _respond(task, principal, "Task created", status_code=201)


@service_operation("Failed to assign task")
def assign_task(db: Session, principal: Principal, task_id: uuid.UUID, worker_id: uuid.UUID):
    require_roles(principal, ADMIN)
    task = load_task(db, task_id)
    assign_worker(db, task, worker_id)
    return _respond(task, principal, "Task assigned")


@service_operation("Failed to reassign task")
def reassign_task(db: Session, principal: Principal, task_id: uuid.UUID, worker_id: uuid.UUID):
    require_roles(principal, ADMIN)
    task = load_task(db, task_id)
    worker = load_worker(db, worker_id)
    if task.worker_id == worker.id:
        raise ValidationError("Task is already assigned to this worker", details={"worker_id": str(worker_id)})
    _transition(db, task, ("assigned",), "assigned", worker_id=worker.id)
    db.flush()
    notify_task_assignment(db, worker, task)
    return _respond(task, principal, "Task reassigned")


@service_operation("Failed to start task")
def start_task(db: Session, principal: Principal, task_id: uuid.UUID, fix: Optional[GPSFix] = None):
    task = load_task(db, task_id)
    _ensure_worker_caller(principal, task)
    now = utcnow()
    _transition(db, task, ("assigned",), "in-progress")
    task.started_at = now
    _apply_fix(task, "start", fix, now)
    db.flush()
    return _respond(task, principal, "Task started")


@service_operation("Failed to complete task")
def complete_task(db: Session, principal: Principal, task_id: uuid.UUID, fix: Optional[GPSFix] = None):
    task = load_task(db, task_id)
    _ensure_worker_caller(principal, task)
    if task.status == "completed":
        raise ConflictError("Task is already completed", details={"task_id": str(task.id)})
    now = utcnow()
    _transition(db, task, ("assigned", "in-progress"), "completed")
    task.completed_at = now
    _apply_fix(task, "end", fix, now)

    _increment(db, Client, task.client_id, "completed_tasks")
    _increment(db, User, task.worker_id, "completed_tasks")
    _increment(db, Site, task.site_id, "completed_tasks", last_visit=now)
    update_section_last_task(db, task.site_id, task.section_ids, status="completed", task_id=task.id, when=now)
    db.flush()
    return _respond(task, principal, "Task completed")


@service_operation("Failed to reject task")
def reject_task(db: Session, principal: Principal, task_id: uuid.UUID, reason: Optional[str] = None):
    task = load_task(db, task_id)
    _ensure_worker_caller(principal, task)
    reject(db, task, reason)
    return _respond(task, principal, "Task rejected")


@service_operation("Failed to flag task for review")
def flag_for_review(db: Session, principal: Principal, task_id: uuid.UUID):
    require_roles(principal, ADMIN)
    task = load_task(db, task_id)
    _transition(db, task, [s for s in TASK_STATUSES if s not in ("review", "rejected")], "review")
    task.review_status = "pending"
    db.flush()
    return _respond(task, principal, "Task flagged for review")


def _status_implied_by(task: Task) -> str:
    if task.completed_at:
        return "completed"
    if task.started_at:
        return "in-progress"
    if task.worker_id:
        return "assigned"
    return "pending"


@service_operation("Failed to review task")
def review_task(db: Session, principal: Principal, task_id: uuid.UUID, decision: ReviewDecision):
    require_roles(principal, ADMIN)
    if isinstance(decision, dict):
        decision = ReviewDecision.model_validate(decision)
    task = load_task(db, task_id)
    task.review_status = decision.decision
    task.review_comments = decision.comments
    task.reviewed_by = principal.id
    task.reviewed_at = utcnow()
    if decision.decision == "rejected" and task.status != "rejected":
        reject(db, task)
    elif decision.decision == "approved" and task.status == "review":
        _transition(db, task, ("review",), _status_implied_by(task))
    db.flush()
    return _respond(task, principal, "Review recorded")


@service_operation("Failed to confirm material")
def confirm_material(db: Session, principal: Principal, task_id: uuid.UUID, material_id: uuid.UUID):
    task = load_task(db, task_id)
    _ensure_worker_caller(principal, task)
    line = next((m for m in task.materials if m.id == material_id), None)
    if line is None:
        raise NotFoundError("Material not found on task", details={"material_id": str(material_id)})
    if line.confirmed:
        raise ConflictError("Material already confirmed", details={"material_id": str(material_id)})
    line.confirmed = True
    line.confirmed_at = utcnow()
    line.confirmed_by = principal.id
    db.flush()
    return _respond(task, principal, "Material confirmed")


@service_operation("Failed to update task")
def update_task(db: Session, principal: Principal, task_id: uuid.UUID, changes: TaskUpdate):
    require_roles(principal, ADMIN)
    if isinstance(changes, dict):
        changes = TaskUpdate.model_validate(changes)
    task = load_task(db, task_id)
    for key, value in changes.model_dump(exclude_unset=True).items():
        if value is None and key in ("title", "description", "priority", "category", "scheduled_date"):
            continue
        setattr(task, key, value)
    db.flush()
    return _respond(task, principal, "Task updated")


@service_operation("Failed to fetch task")
def get_task(db: Session, principal: Principal, task_id: uuid.UUID):
    task = load_task(db, task_id)
    ensure_task_access(principal, task, allow_client=True)
    return _respond(task, principal)


@service_operation("Failed to list tasks")
def list_tasks(
    db: Session,
    principal: Principal,
    status: Optional[str] = None,
    site_id: Optional[uuid.UUID] = None,
    limit: int = 100,
    offset: int = 0,
):
    q = db.query(Task)
    if principal.is_worker:
        q = q.filter(Task.worker_id == principal.id)
    elif principal.is_client:
        q = q.filter(Task.client_id == principal.id)
    if status:
        if status not in TASK_STATUSES:
            raise ValidationError("Invalid status filter", details={"status": status})
        q = q.filter(Task.status == status)
    if site_id:
        q = q.filter(Task.site_id == site_id)
    tasks = q.order_by(Task.scheduled_date.desc()).offset(offset).limit(min(limit, 500)).all()
    return ok([TaskResponse.from_task(t, client_view=principal.is_client) for t in tasks])


@service_operation("Failed to list client tasks")
def list_client_tasks(db: Session, principal: Principal, client_id: uuid.UUID):
    require_roles(principal, ADMIN, CLIENT)
    if principal.is_client and principal.id != client_id:
        raise AuthorizationError("Clients may only view their own tasks")
    load_client(db, client_id)
    tasks = (
        db.query(Task)
        .filter(Task.client_id == client_id)
        .order_by(Task.scheduled_date.desc())
        .all()
    )
    return ok([TaskResponse.from_task(t, client_view=principal.is_client) for t in tasks])


def purge_task(db: Session, host: MediaHost, task: Task) -> int:
    """Remove a task and the hosted objects it owns. Reference snapshots share objects with sections and are kept."""
    removed = 0
    for media in task.media:
        if safe_delete(host, media.storage_id, media.media_kind):
            removed += 1
    if safe_delete(host, task.feedback_image_storage_id):
        removed += 1
    db.delete(task)
    return removed


@service_operation("Failed to delete task")
def delete_task(db: Session, principal: Principal, host: MediaHost, task_id: uuid.UUID):
    require_roles(principal, ADMIN)
    task = load_task(db, task_id)
    removed = purge_task(db, host, task)
    db.flush()
    logger.info("task_deleted", task_id=str(task_id), hosted_objects_removed=removed)
    return ok({"task_id": task_id, "hosted_objects_removed": removed}, "Task deleted")
