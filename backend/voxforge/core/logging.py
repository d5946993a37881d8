from __future__ import annotations
import logging
import re
import sys
from typing import Optional

_configured = False


class _OneLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        return base.replace("\n", " | ")


class RedactFilter(logging.Filter):
    """Mask e-mails and credential-looking strings before records are emitted."""

    EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
    TOKEN_RE = re.compile(
        r"(?i)(bearer\s+[A-Za-z0-9\-._~+/]+=*"
        r"|(?:sk|rk|pk)_(?:test|live)_[A-Za-z0-9]{8,}"
        r"|whsec_[A-Za-z0-9]{8,}"
        r"|api[_-]?key[=:]\s*\S{8,}"
        r"|xi-api-key[=:]\s*\S{8,})"
    )

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        redacted = self.EMAIL_RE.sub("<redacted-email>", msg)
        redacted = self.TOKEN_RE.sub("<redacted-secret>", redacted)
        if redacted != msg:
            record.msg = redacted
            record.args = ()
        return True


def configure_logging(level: int = logging.INFO) -> None:
    global _configured
    logger = logging.getLogger()
    logger.setLevel(level)

    # Drop filters/handlers from a previous call so re-configuration is idempotent
    for f in list(logger.filters):
        if isinstance(f, RedactFilter):
            logger.removeFilter(f)
    for h in list(logger.handlers):
        if getattr(h, "_voxforge_handler", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_OneLineFormatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
    handler._voxforge_handler = True  # type: ignore[attr-defined]

    redact_filter = RedactFilter()
    handler.addFilter(redact_filter)
    # Attach at the logger level so caplog-style collectors see redacted messages.
    logger.addFilter(redact_filter)
    logger.addHandler(handler)
    _configured = True

    # Quiet noisy libraries a bit
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name:
        name = __name__
    if not _configured:
        configure_logging()
    return logging.getLogger(name)
