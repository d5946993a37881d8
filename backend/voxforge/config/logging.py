"""Logging and Sentry configuration for the application."""
from __future__ import annotations

import logging
import os

from ..core.config import settings
from ..core.logging import configure_logging as core_configure_logging
from ..core.logging import get_logger

_NON_REPORTING_ENVS = ("dev", "development", "test", "testing", "local")


def configure_logging() -> None:
    """Configure application logging and quiet chatty client libraries."""
    core_configure_logging()
    for noisy in ("httpx", "httpcore", "botocore", "urllib3", "stripe"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def setup_sentry(environment: str, dsn: str | None = None) -> bool:
    """Initialize Sentry outside dev/test when a DSN is available.

    Returns True when Sentry was initialized.
    """
    log = get_logger("voxforge.config.logging")

    sentry_dsn = dsn or settings.SENTRY_DSN
    if not sentry_dsn or environment.lower() in _NON_REPORTING_ENVS:
        log.debug("[startup] Sentry disabled (missing DSN or dev/test env)")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.httpx import HttpxIntegration

    def before_send(event, hint):
        # Quota rejections and client mistakes are expected traffic
        status_code = event.get("tags", {}).get("status_code")
        if status_code in (400, 401, 403, 404, 429):
            return None
        return event

    try:
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
                SqlalchemyIntegration(),
                HttpxIntegration(),
            ],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
            environment=environment,
            send_default_pii=False,
            before_send=before_send,
            max_breadcrumbs=100,
        )
    except Exception as exc:
        log.warning("[startup] Sentry init failed: %s", exc)
        return False
    log.info("[startup] Sentry initialized for env=%s", environment)
    return True
