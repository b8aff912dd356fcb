from contextlib import contextmanager

from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy import create_engine
from .config import settings


def build_engine(database_url: str):
    kwargs = {"future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(pool_size=5, max_overflow=10, pool_recycle=3600)
    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url)

# One Session per operation; never share across threads
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def init_db(bind=None) -> None:
    # Import models so every table is registered on Base.metadata
    from .models import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope():
    """Session for scripts and scheduled jobs; the caller commits."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


_AFTER_COMMIT_KEY = "after_commit_callbacks"


def call_after_commit(db, callback) -> None:
    """Queue ``callback`` until the session's current unit of work has committed."""
    db.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


def run_after_commit(db) -> None:
    for callback in db.info.pop(_AFTER_COMMIT_KEY, []):
        callback()


def discard_after_commit(db) -> None:
    db.info.pop(_AFTER_COMMIT_KEY, None)
