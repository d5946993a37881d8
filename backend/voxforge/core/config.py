from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("voxforge.core.config")

# backend/ directory; .env files live next to the package
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_ENV_LOCAL = _PROJECT_ROOT / ".env.local"
_ENV_FILE = _PROJECT_ROOT / ".env"

# Existing env vars take precedence (override=False) so CI/CD values win.
if _ENV_LOCAL.exists():
    load_dotenv(_ENV_LOCAL, override=False)
    log.info("[config] Loaded .env.local from %s", _ENV_LOCAL)
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE, override=False)
    log.info("[config] Loaded .env from %s", _ENV_FILE)

_PROD_ENVS = {"prod", "production", "stage", "staging"}
_DEV_ENVS = {"dev", "development", "local", "test", "testing"}
# FastAPI debug mode; test envs excluded
_DEBUG_ENVS = {"dev", "development", "local"}


class Settings(BaseSettings):
    # --- Core Infrastructure ---
    APP_ENV: str = Field(
        default="dev",
        validation_alias=AliasChoices("APP_ENV", "ENV", "PYTHON_ENV"),
    )
    DATABASE_URL: Optional[str] = None
    SECRET_KEY: str = "dev-secret-key-change-me"  # Used for signing JWTs and settings encryption

    # --- JWT Settings ---
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # --- Stripe Billing (fallbacks; admin settings in the DB win) ---
    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLISHABLE_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # --- Opaybd regional gateway ---
    OPAYBD_API_BASE: str = "https://verify.opaybd.com/api/payment"
    OPAYBD_TIMEOUT_SECONDS: float = 30.0

    # --- ElevenLabs ---
    ELEVENLABS_API_KEY: str = ""
    ELEVENLABS_TIMEOUT_SECONDS: float = 120.0

    # --- Object storage (Cloudflare R2, S3-compatible) ---
    R2_ACCOUNT_ID: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET: str = "voxforge-media"
    MEDIA_ROOT: str = "/tmp/voxforge-media"

    # --- Application Behavior ---
    ADMIN_EMAIL: str = ""
    APP_BASE_URL: Optional[str] = None
    CORS_ALLOWED_ORIGINS: str = "http://127.0.0.1:5173,http://localhost:5173"
    TASKS_AUTH: str = ""
    SETTINGS_CACHE_TTL_SECONDS: float = 60.0
    SENTRY_DSN: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=(str(_ENV_LOCAL), str(_ENV_FILE)),
        extra="ignore",
    )

    @property
    def is_dev_mode(self) -> bool:
        env = (self.APP_ENV or "dev").strip().lower()
        return env in _DEV_ENVS

    @property
    def debug_enabled(self) -> bool:
        env = (self.APP_ENV or "dev").strip().lower()
        return env in _DEBUG_ENVS

    @property
    def cors_allowed_origin_list(self) -> list[str]:
        raw = (self.CORS_ALLOWED_ORIGINS or "").replace(";", ",")
        seen: set[str] = set()
        merged: list[str] = []
        for origin in raw.split(","):
            cleaned = origin.strip().rstrip("/")
            if cleaned and cleaned not in seen:
                seen.add(cleaned)
                merged.append(cleaned)
        return merged

    @model_validator(mode="after")
    def _validate_and_warn(self):
        env = (self.APP_ENV or "dev").strip().lower()

        if not (self.DATABASE_URL or "").strip():
            if env in _PROD_ENVS:
                raise ValueError("DATABASE_URL is required outside dev/test")
            log.warning("[config] DATABASE_URL missing; falling back to a local SQLite file")

        # Surface optional secrets that default to blanks so operators know what's absent.
        optional_keys = [
            "ELEVENLABS_API_KEY",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "R2_ACCOUNT_ID",
            "R2_ACCESS_KEY_ID",
            "R2_SECRET_ACCESS_KEY",
        ]
        missing_optional = [key for key in optional_keys if not getattr(self, key, "").strip()]
        if missing_optional:
            log.warning(
                "Missing/placeholder secrets%s: %s",
                " (dev allowed)" if env in _DEV_ENVS else "",
                ", ".join(sorted(missing_optional)),
            )

        if env in _PROD_ENVS:
            if not self.SECRET_KEY or self.SECRET_KEY == "dev-secret-key-change-me":
                raise ValueError("SECRET_KEY must be configured for production deployments")
            if not self.TASKS_AUTH:
                log.warning("[config] TASKS_AUTH is empty; internal billing endpoints are disabled")

        return self


settings = Settings()

# Local SQLite fallback keeps `python -m uvicorn` usable without a database server.
if not (settings.DATABASE_URL or "").strip():
    settings.DATABASE_URL = os.getenv("VOXFORGE_SQLITE_URL", f"sqlite:///{_PROJECT_ROOT / 'voxforge.db'}")
