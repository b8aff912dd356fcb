import uuid
from typing import Literal, Optional

from pydantic import BaseModel

from ..errors import AuthorizationError


ADMIN = "admin"
WORKER = "worker"
CLIENT = "client"


class Principal(BaseModel):
    """Already-authenticated caller handed to every operation by the identity provider."""

    id: uuid.UUID
    role: Literal["admin", "worker", "client"]
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def is_worker(self) -> bool:
        return self.role == WORKER

    @property
    def is_client(self) -> bool:
        return self.role == CLIENT


def require_roles(principal: Principal, *roles: str) -> Principal:
    if principal.role not in roles:
        raise AuthorizationError(
            "Not authorized to perform this action",
            details={"role": principal.role, "allowed": list(roles)},
        )
    return principal


def ensure_task_access(principal: Principal, task, *, allow_client: bool = False) -> None:
    """Admins may act on any task; workers only on tasks assigned to them; clients only on their own tasks."""
    if principal.is_admin:
        return
    if principal.is_worker and task.worker_id is not None and task.worker_id == principal.id:
        return
    if allow_client and principal.is_client and task.client_id == principal.id:
        return
    raise AuthorizationError("Not authorized to access this task", details={"task_id": str(task.id)})
