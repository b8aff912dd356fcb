"""
Daily retention jobs.

Both only ever look at tasks in a terminal status (completed or rejected)
whose completion, or last update for rejected work, is older than the
configured window, so they can run alongside normal traffic.
"""
from datetime import datetime, timedelta
from typing import Dict, List

import structlog
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..db import session_scope
from ..logging import operation_context
from ..models.models import TERMINAL_TASK_STATUSES, Task, utcnow
from ..storage.factory import get_media_host
from ..storage.provider import MediaHost
from .task_lifecycle import purge_task
from .uploads import safe_delete

logger = structlog.get_logger(__name__)


def _aged_terminal_tasks(db: Session, older_than: datetime):
    return db.query(Task).filter(
        Task.status.in_(TERMINAL_TASK_STATUSES),
        func.coalesce(Task.completed_at, Task.updated_at) < older_than,
    )


def purge_task_media(db: Session, host: MediaHost, older_than: datetime) -> Dict[str, int]:
    """Drop before/after media and feedback photos of aged tasks, host first then locally."""
    tasks: List[Task] = (
        _aged_terminal_tasks(db, older_than)
        .filter(or_(Task.media.any(), Task.feedback_image_storage_id.isnot(None)))
        .all()
    )
    media_removed = 0
    for task in tasks:
        for media in list(task.media):
            safe_delete(host, media.storage_id, media.media_kind)
            task.media.remove(media)
            media_removed += 1
        if task.feedback_image_storage_id:
            safe_delete(host, task.feedback_image_storage_id)
            task.feedback_image_url = None
            task.feedback_image_storage_id = None
            media_removed += 1
    db.flush()
    return {"tasks": len(tasks), "media_removed": media_removed}


def purge_tasks(db: Session, host: MediaHost, older_than: datetime) -> Dict[str, int]:
    tasks: List[Task] = _aged_terminal_tasks(db, older_than).all()
    hosted = 0
    for task in tasks:
        hosted += purge_task(db, host, task)
    db.flush()
    return {"tasks": len(tasks), "hosted_objects_removed": hosted}


def _run(job: str, purge, retention_days: int) -> None:
    cutoff = utcnow() - timedelta(days=retention_days)
    with operation_context(job, retention_days=retention_days):
        try:
            with session_scope() as db:
                stats = purge(db, get_media_host(), cutoff)
                db.commit()
        except Exception as exc:
            logger.exception("maintenance_failed", job=job, error=str(exc))
            return
        logger.info("maintenance_completed", job=job, cutoff=cutoff.isoformat(), **stats)


def delete_old_task_media() -> None:
    _run("delete_old_task_media", purge_task_media, settings.task_media_retention_days)


def delete_old_tasks() -> None:
    _run("delete_old_tasks", purge_tasks, settings.task_retention_days)
