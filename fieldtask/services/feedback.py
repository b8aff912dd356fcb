import uuid
from typing import Optional, Union

import structlog
from sqlalchemy.orm import Session

from ..auth.principal import Principal
from ..errors import AuthorizationError, ValidationError, ok, service_operation
from ..models.models import Task, utcnow
from ..schemas.common import IncomingFile
from ..schemas.tasks import FeedbackCreate, TaskResponse
from ..storage.provider import MediaHost
from .records import load_task
from .uploads import safe_delete, upload_files, validate_files

logger = structlog.get_logger(__name__)

SATISFIED_COMMENT = "Client is satisfied with the work"


def _ensure_can_give_feedback(principal: Principal, task: Task) -> None:
    if principal.is_admin:
        return
    if principal.is_client and task.client_id == principal.id:
        return
    raise AuthorizationError("Only the task's client can leave feedback", details={"task_id": str(task.id)})


def _ensure_completed(task: Task) -> None:
    if task.status != "completed":
        raise ValidationError(
            "Feedback can only be given on completed tasks",
            details={"task_id": str(task.id), "status": task.status},
        )


def _record(task: Task, *, rating: int, comment: Optional[str], image_number: Optional[int],
            image_url: Optional[str], image_storage_id: Optional[str], satisfied_only: bool) -> None:
    task.feedback_rating = rating
    task.feedback_comment = comment
    task.feedback_image_number = image_number
    task.feedback_image_url = image_url
    task.feedback_image_storage_id = image_storage_id
    task.feedback_submitted_at = utcnow()
    task.feedback_is_satisfied_only = satisfied_only


@service_operation("Failed to submit feedback")
def submit_feedback(
    db: Session,
    principal: Principal,
    host: MediaHost,
    task_id: uuid.UUID,
    data: Union[FeedbackCreate, dict],
    photo: Optional[IncomingFile] = None,
):
    if isinstance(data, dict):
        data = FeedbackCreate.model_validate(data)
    task = load_task(db, task_id)
    _ensure_can_give_feedback(principal, task)
    _ensure_completed(task)
    if data.image_number is not None and data.image_number > len(task.media_in("after")):
        raise ValidationError(
            "image_number does not match an after image of this task",
            details={"image_number": data.image_number},
        )

    image_url = image_storage_id = None
    if photo is not None:
        (photo,) = validate_files([photo])
        if not photo.content_type.lower().startswith("image/"):
            raise ValidationError("Feedback photo must be an image", details={"filename": photo.filename})
        (uploaded,) = upload_files(host, [photo], folder="feedback")
        image_url, image_storage_id = uploaded.secure_url, uploaded.storage_id

    previous = task.feedback_image_storage_id
    _record(
        task,
        rating=data.rating,
        comment=data.comment,
        image_number=data.image_number,
        image_url=image_url,
        image_storage_id=image_storage_id,
        satisfied_only=False,
    )
    if previous and previous != image_storage_id:
        safe_delete(host, previous)
    db.flush()
    logger.info("feedback_submitted", task_id=str(task.id), rating=data.rating)
    return ok(TaskResponse.from_task(task, client_view=principal.is_client).feedback, "Feedback submitted")


@service_operation("Failed to record satisfaction")
def mark_satisfied(db: Session, principal: Principal, host: MediaHost, task_id: uuid.UUID):
    task = load_task(db, task_id)
    _ensure_can_give_feedback(principal, task)
    _ensure_completed(task)
    previous = task.feedback_image_storage_id
    _record(
        task,
        rating=5,
        comment=SATISFIED_COMMENT,
        image_number=None,
        image_url=None,
        image_storage_id=None,
        satisfied_only=True,
    )
    if previous:
        safe_delete(host, previous)
    db.flush()
    return ok(TaskResponse.from_task(task, client_view=principal.is_client).feedback, "Marked as satisfied")
