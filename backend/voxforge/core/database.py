from contextlib import contextmanager
from typing import Iterator

from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
import logging
import os

# Ensure models are imported so SQLModel metadata is populated
from ..models import user as _user_models  # noqa: F401
from ..models import billing as _billing_models  # noqa: F401
from ..models import usage as _usage_models  # noqa: F401
from ..models import settings as _settings_models  # noqa: F401
from ..models import media as _media_models  # noqa: F401
from .config import settings

log = logging.getLogger(__name__)


def _is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


_POOL_KWARGS = {
    "pool_pre_ping": _is_truthy(os.getenv("DB_POOL_PRE_PING", "true")),
    "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
    "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 10)),
    "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
    "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
    # Force ROLLBACK on connections returned to the pool
    "pool_reset_on_return": "rollback",
}


def enable_sqlite_foreign_keys(engine: Engine) -> Engine:
    """SQLite ignores FOREIGN KEY clauses (and ON DELETE SET NULL) unless enabled per connection."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn, _connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def _create_engine(url: str):
    parsed_url = make_url(url)
    backend_name = parsed_url.get_backend_name()

    if backend_name == "sqlite":
        log.info("[db] Using SQLite engine (database=%s)", parsed_url.database or ":memory:")
        return enable_sqlite_foreign_keys(
            create_engine(url, echo=False, connect_args={"check_same_thread": False})
        )

    if backend_name != "postgresql":
        raise RuntimeError(f"Unsupported database backend: {backend_name}")

    log.info(
        "[db] Using DATABASE_URL for engine (driver=%s, host=%s, port=%s, database=%s)",
        parsed_url.drivername,
        parsed_url.host or "unknown",
        parsed_url.port or "unknown",
        parsed_url.database or "unknown",
    )
    return create_engine(url, echo=False, **_POOL_KWARGS)


engine = _create_engine(settings.DATABASE_URL or "sqlite://")


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)
    log.info("[db] Tables ensured")


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    except Exception:
        try:
            session.rollback()
        except Exception as rollback_exc:
            log.warning("[db] Rollback failed in get_session cleanup: %s", rollback_exc)
        raise
    finally:
        session.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a context manager for DB sessions outside FastAPI dependencies.

    Caller is responsible for commit(); any open transaction is rolled back
    before the connection goes back to the pool.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    except Exception:
        try:
            session.rollback()
        except Exception as rollback_exc:
            log.warning("[db] Rollback failed in session_scope cleanup: %s", rollback_exc)
        raise
    finally:
        try:
            if session.in_transaction():
                session.rollback()
        except Exception as rollback_exc:
            log.debug("[db] Pre-close rollback in session_scope: %s", rollback_exc)
        session.close()
