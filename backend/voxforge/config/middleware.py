"""Middleware configuration for the FastAPI application."""
from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware

if TYPE_CHECKING:
    from fastapi import FastAPI
    from ..core.config import Settings


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    from ..core.logging import get_logger

    log = get_logger("voxforge.config.middleware")
    origins = settings.cors_allowed_origin_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )
    log.info("[startup] CORS enabled for %d origin(s)", len(origins))
