"""Error taxonomy and the result envelope returned by every service operation."""

from __future__ import annotations

import functools
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .db import discard_after_commit, run_after_commit
from .logging import operation_context

logger = structlog.get_logger(__name__)


def build_error_payload(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload = {"code": code, "message": message}
    if details is not None:
        payload["details"] = details
    return payload


class ServiceError(Exception):
    """Base class for failures that abort an operation and are reported to the caller."""

    status_code = 500
    code = "server_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def payload(self) -> Dict[str, Any]:
        return build_error_payload(self.code, self.message, self.details)


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"


class AuthorizationError(ServiceError):
    status_code = 403
    code = "forbidden"


class ConflictError(ServiceError):
    status_code = 409
    code = "conflict"


class InsufficientStockError(ConflictError):
    code = "insufficient_stock"

    def __init__(self, item_name: str, requested: float, available: float, item_id: Optional[str] = None):
        super().__init__(
            f"Insufficient stock for '{item_name}': requested {requested:g}, available {available:g}",
            details={"item_id": item_id, "item_name": item_name, "requested": requested, "available": available},
        )


class ExternalDependencyError(ServiceError):
    status_code = 502
    code = "external_dependency_failure"


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class OperationResult(BaseModel):
    success: bool
    message: str
    status_code: int = 200
    data: Any = None
    error: Optional[ErrorDetail] = None

    @classmethod
    def failure(cls, exc: ServiceError, message: Optional[str] = None) -> "OperationResult":
        return cls(
            success=False,
            message=message or exc.message,
            status_code=exc.status_code,
            error=ErrorDetail(**exc.payload),
        )


def ok(data: Any = None, message: str = "OK", status_code: int = 200) -> OperationResult:
    return OperationResult(success=True, message=message, status_code=status_code, data=data)


def _validation_details(exc: PydanticValidationError) -> Dict[str, Any]:
    return {
        "errors": [
            {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg")}
            for err in exc.errors()
        ]
    }


def service_operation(failure_message: str) -> Callable:
    """Run an operation inside the caller's session transaction.

    The wrapped function takes the SQLAlchemy session as its first argument and
    returns an ``OperationResult`` (usually via ``ok``). On success the session is
    committed and any work queued with ``call_after_commit`` runs; any error rolls
    the whole transaction back, drops the queued work and is converted into a
    failed ``OperationResult``. Nothing propagates past this boundary.
    """

    def decorator(func: Callable[..., OperationResult]) -> Callable[..., OperationResult]:
        @functools.wraps(func)
        def wrapper(db, *args, **kwargs) -> OperationResult:
            with operation_context(func.__name__):
                try:
                    result = func(db, *args, **kwargs)
                    db.commit()
                except ServiceError as exc:
                    db.rollback()
                    discard_after_commit(db)
                    logger.info("operation_rejected", code=exc.code, reason=exc.message)
                    return OperationResult.failure(exc)
                except PydanticValidationError as exc:
                    db.rollback()
                    discard_after_commit(db)
                    err = ValidationError("Invalid input", details=_validation_details(exc))
                    logger.info("operation_rejected", code=err.code, reason=str(exc))
                    return OperationResult.failure(err)
                except Exception as exc:
                    db.rollback()
                    discard_after_commit(db)
                    logger.exception("operation_failed", error=str(exc))
                    err = ServiceError(failure_message, details={"error": str(exc)})
                    return OperationResult.failure(err)
                else:
                    run_after_commit(db)
                    return result

        return wrapper

    return decorator
