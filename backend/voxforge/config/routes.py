"""Router registration. Every API route lives under ``/api``."""
from __future__ import annotations

from fastapi import FastAPI

API_PREFIX = "/api"


def attach_routes(app: FastAPI) -> None:
    from ..core.logging import get_logger
    from ..routers import admin, billing, billing_webhook, generation, health, media, opaybd

    log = get_logger("voxforge.config.routes")

    app.include_router(health.router, prefix=API_PREFIX)
    app.include_router(billing.router, prefix=API_PREFIX)
    app.include_router(billing.internal_router, prefix=API_PREFIX)
    app.include_router(billing_webhook.router, prefix=API_PREFIX)
    app.include_router(opaybd.router, prefix=API_PREFIX)
    app.include_router(generation.router, prefix=API_PREFIX)
    app.include_router(media.router, prefix=API_PREFIX)
    app.include_router(admin.router, prefix=API_PREFIX)

    log.info("[startup] Registered %d routes", len(app.routes))
