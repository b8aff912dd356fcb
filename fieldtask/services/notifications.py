"""
Notification dispatcher for WhatsApp.
Delivery waits for the assignment to commit; nothing here ever raises.
"""
from typing import Any, Dict, Optional

import httpx
import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..db import call_after_commit
from ..models.models import Notification, Task, User, utcnow

logger = structlog.get_logger(__name__)


def whatsapp_configured() -> bool:
    return bool(settings.enable_whatsapp and settings.whatsapp_phone_id and settings.whatsapp_token)


def send_whatsapp_text(phone: str, body: str) -> None:
    """Post a plain text message through the WhatsApp Cloud API."""
    url = f"https://graph.facebook.com/{settings.whatsapp_api_version}/{settings.whatsapp_phone_id}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "to": phone,
        "type": "text",
        "text": {"body": body},
    }
    headers = {"Authorization": f"Bearer {settings.whatsapp_token}"}
    with httpx.Client(timeout=settings.notification_timeout_s) as client:
        resp = client.post(url, json=payload, headers=headers)
        resp.raise_for_status()


def create_notification(
    db: Session,
    recipient_id,
    template_key: str,
    payload: Dict[str, Any],
    phone: Optional[str] = None,
) -> Notification:
    notification = Notification(
        recipient_id=recipient_id,
        recipient_phone=phone,
        channel="whatsapp",
        template_key=template_key,
        payload_json=payload,
        status="pending",
    )
    db.add(notification)
    return notification


def _assignment_text(worker: User, task: Task) -> str:
    when = task.scheduled_date.strftime("%Y-%m-%d %H:%M") if task.scheduled_date else "TBD"
    return f"Hello {worker.name}, you have been assigned a new task: {task.title} (scheduled {when})."


def deliver_notification(db: Session, notification: Notification, phone: str, body: str) -> None:
    """Send a recorded notice and store the outcome. Runs outside any operation's transaction; never raises."""
    try:
        send_whatsapp_text(phone, body)
        notification.status = "sent"
        notification.sent_at = utcnow()
        logger.info("notification_sent", notification_id=str(notification.id))
    except Exception as exc:
        notification.status = "failed"
        notification.error_message = str(exc)[:500]
        logger.warning("notification_send_failed", notification_id=str(notification.id), error=str(exc))
    try:
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("notification_status_save_failed", notification_id=str(notification.id), error=str(exc))


def notify_task_assignment(db: Session, worker: User, task: Task) -> Optional[Notification]:
    """Record an assignment notice; when configured it is delivered once the assignment commits. Never raises."""
    try:
        notification = create_notification(
            db,
            worker.id,
            "task_assigned",
            {"task_id": str(task.id), "title": task.title, "priority": task.priority},
            phone=worker.phone,
        )
    except Exception as exc:
        logger.warning("notification_record_failed", worker_id=str(worker.id), error=str(exc))
        return None

    if not worker.phone or not whatsapp_configured():
        notification.status = "skipped"
        return notification

    phone, body = worker.phone, _assignment_text(worker, task)
    call_after_commit(db, lambda: deliver_notification(db, notification, phone, body))
    logger.info("notification_queued", worker_id=str(worker.id), task_id=str(task.id))
    return notification
