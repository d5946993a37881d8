from fastapi import APIRouter
from fastapi.responses import JSONResponse
import logging

from ..core import database as _db

log = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


def _check_db() -> bool:
    try:
        # Dereference at call time so a patched engine is honored
        with _db.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as exc:
        log.warning("event=health.db_unreachable error=%s", exc)
        return False


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/deep")
def health_deep():
    db_ok = _check_db()
    body = {"status": "ok" if db_ok else "degraded", "db": "ok" if db_ok else "fail"}
    return JSONResponse(status_code=200 if db_ok else 503, content=body)
