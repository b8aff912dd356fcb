import uuid
import logging
from contextlib import contextmanager
from typing import Optional

import structlog

from .config import settings


def setup_logging(level: Optional[str] = None) -> None:
    level = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def operation_context(operation: str, **fields):
    """Bind an operation id (and any extra fields) to every log line emitted inside the block."""
    operation_id = str(uuid.uuid4())
    with structlog.contextvars.bound_contextvars(operation=operation, operation_id=operation_id, **fields):
        yield operation_id
