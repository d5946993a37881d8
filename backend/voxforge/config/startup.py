"""Startup handlers."""
from __future__ import annotations

from fastapi import FastAPI

from ..core.logging import get_logger

log = get_logger("voxforge.config.startup")


def run_startup_tasks() -> None:
    from ..core import database

    database.create_db_and_tables()
    log.info("[startup] Startup tasks complete")


def register_startup(app: FastAPI) -> None:
    @app.on_event("startup")
    def _startup() -> None:  # type: ignore
        run_startup_tasks()
