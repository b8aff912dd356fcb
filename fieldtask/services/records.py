import uuid

from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from ..models.models import Client, Task, User


def load_task(db: Session, task_id: uuid.UUID) -> Task:
    task = db.get(Task, task_id)
    if not task:
        raise NotFoundError("Task not found", details={"task_id": str(task_id)})
    return task


def load_client(db: Session, client_id: uuid.UUID) -> Client:
    client = db.get(Client, client_id)
    if not client:
        raise NotFoundError("Client not found", details={"client_id": str(client_id)})
    return client


def load_worker(db: Session, worker_id: uuid.UUID) -> User:
    worker = db.get(User, worker_id)
    if not worker:
        raise NotFoundError("Worker not found", details={"worker_id": str(worker_id)})
    if worker.role != "worker":
        raise ValidationError(
            "Only accounts with the worker role can be assigned to tasks",
            details={"worker_id": str(worker_id), "role": worker.role},
        )
    if not worker.is_active:
        raise ValidationError("Worker account is inactive", details={"worker_id": str(worker_id)})
    return worker


def expire_loaded(db: Session, model, ids) -> None:
    """Expire in-session rows changed behind the ORM's back by a bulk UPDATE."""
    ids = set(ids)
    for obj in list(db.identity_map.values()):
        if isinstance(obj, model) and obj.id in ids:
            db.expire(obj)
