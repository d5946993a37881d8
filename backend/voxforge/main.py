"""FastAPI application factory.

``create_app()`` wires logging, Sentry, middleware, error handlers, routes
and startup tasks. The module-level ``app`` is what ASGI servers load::

    uvicorn voxforge.main:app --reload
"""
from __future__ import annotations

from fastapi import FastAPI


def create_app() -> FastAPI:
    from .config.logging import configure_logging, setup_sentry
    from .config.middleware import configure_middleware
    from .config.routes import attach_routes
    from .config.startup import register_startup
    from .core.config import settings
    from .core.logging import get_logger
    from .exceptions import install_exception_handlers

    # Step 1: logging and error reporting
    configure_logging()
    setup_sentry(environment=settings.APP_ENV)
    log = get_logger("voxforge.main")

    # Step 2: app; debug only for local development so tracebacks never leak
    app = FastAPI(title="VoxForge API", debug=settings.debug_enabled)

    # Step 3: middleware, error envelope, routes
    configure_middleware(app, settings)
    install_exception_handlers(app)
    attach_routes(app)

    # Step 4: startup tasks
    register_startup(app)

    log.info("[startup] Application configured (env=%s)", settings.APP_ENV)
    return app


app = create_app()


__all__ = ["create_app", "app"]
