"""Database-backed admin settings with a short process-wide cache.

Settings rows live in ``admin_settings``. Reads go through a snapshot of the
whole table that is refreshed after ``SETTINGS_CACHE_TTL_SECONDS`` or on any
write. Secret values are Fernet-encrypted at rest with a key derived from
``SECRET_KEY``.
"""
from __future__ import annotations

import base64
import logging
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlmodel import Session, select

from ..core.config import settings as app_settings
from ..core.errors import SettingsValidationError
from ..models.enums import PaymentProvider
from ..models.settings import AdminSetting
from ..models.types import utcnow

log = logging.getLogger(__name__)

PAYMENT_CATEGORY = "payment"

ACTIVE_PAYMENT_PROVIDER = "active_payment_provider"
STRIPE_ENVIRONMENT = "environment"
STRIPE_PUBLISHABLE_KEY = "stripe_publishable_key"
STRIPE_SECRET_KEY = "stripe_secret_key"
STRIPE_WEBHOOK_SECRET = "stripe_webhook_secret"
OPAY_API_KEY = "opay_api_key"

SECRET_KEYS = frozenset({STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, OPAY_API_KEY})

_KDF_SALT = b"voxforge.admin-settings.v1"
_MASK = "…"


@lru_cache(maxsize=4)
def _fernet_for(secret: str) -> Fernet:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=_KDF_SALT, iterations=100_000)
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
    return Fernet(key)


def encrypt_value(value: str) -> str:
    return _fernet_for(app_settings.SECRET_KEY).encrypt(value.encode("utf-8")).decode("ascii")


def decrypt_value(token: str) -> Optional[str]:
    try:
        return _fernet_for(app_settings.SECRET_KEY).decrypt(token.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError):
        log.error("event=settings.decrypt_failed (SECRET_KEY changed or value corrupted)")
        return None


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@dataclass
class _Snapshot:
    values: Dict[str, Optional[str]]
    categories: Dict[str, str]
    loaded_at: float


_cache_lock = threading.Lock()
_snapshot: Optional[_Snapshot] = None


def clear_cache() -> None:
    global _snapshot
    with _cache_lock:
        _snapshot = None


def _load_snapshot(session: Session) -> _Snapshot:
    global _snapshot
    ttl = max(0, int(app_settings.SETTINGS_CACHE_TTL_SECONDS or 0))
    with _cache_lock:
        snap = _snapshot
        if snap is not None and (time.monotonic() - snap.loaded_at) < ttl:
            return snap

    rows = session.exec(select(AdminSetting)).all()
    values: Dict[str, Optional[str]] = {}
    categories: Dict[str, str] = {}
    for row in rows:
        values[row.key] = decrypt_value(row.value) if row.encrypted and row.value else row.value
        categories[row.key] = row.category
    snap = _Snapshot(values=values, categories=categories, loaded_at=time.monotonic())
    with _cache_lock:
        _snapshot = snap
    return snap


class SettingsStore:
    """Read/write access to admin settings for one DB session."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = _load_snapshot(self.session).values.get(key)
        if value is None or value == "":
            return default
        return value

    def get_category(self, category: str) -> Dict[str, Optional[str]]:
        snap = _load_snapshot(self.session)
        return {k: v for k, v in snap.values.items() if snap.categories.get(k) == category}

    def _upsert(
        self,
        key: str,
        value: str,
        category: str,
        description: Optional[str],
        encrypted: bool,
    ) -> AdminSetting:
        row = self.session.exec(select(AdminSetting).where(AdminSetting.key == key)).first()
        stored = encrypt_value(value) if encrypted and value else value
        now = utcnow()
        if row is None:
            row = AdminSetting(
                key=key,
                value=stored,
                category=category,
                encrypted=encrypted,
                description=description,
                created_at=now,
                updated_at=now,
            )
        else:
            row.value = stored
            row.category = category
            row.encrypted = encrypted
            if description is not None:
                row.description = description
            row.updated_at = now
        self.session.add(row)
        return row

    def set(
        self,
        key: str,
        value: str,
        category: str = "general",
        description: Optional[str] = None,
        encrypted: bool = False,
    ) -> None:
        self.set_many([
            {"key": key, "value": value, "category": category, "description": description, "encrypted": encrypted}
        ])

    def set_many(self, entries: Iterable[Mapping[str, Any]]) -> int:
        count = 0
        try:
            for entry in entries:
                key = entry["key"]
                self._upsert(
                    key,
                    str(entry.get("value") or ""),
                    entry.get("category") or "general",
                    entry.get("description"),
                    bool(entry.get("encrypted", key in SECRET_KEYS)),
                )
                count += 1
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            clear_cache()
        log.info("event=settings.saved count=%s", count)
        return count


# ---------------------------------------------------------------------------
# Payment helpers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OpaySettings:
    api_key: Optional[str]

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class PaymentSettings:
    environment: str
    stripe_publishable_key: Optional[str]
    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]


def get_active_payment_provider(session: Session) -> PaymentProvider:
    raw = SettingsStore(session).get(ACTIVE_PAYMENT_PROVIDER)
    try:
        return PaymentProvider((raw or "").strip().lower())
    except ValueError:
        if raw:
            log.warning("event=settings.invalid_provider value=%s; falling back to stripe", raw)
        return PaymentProvider.stripe


def get_opay_settings(session: Session) -> OpaySettings:
    return OpaySettings(api_key=SettingsStore(session).get(OPAY_API_KEY))


def get_payment_settings(session: Session) -> PaymentSettings:
    """Stripe configuration: database values win, environment is the fallback."""
    store = SettingsStore(session)
    return PaymentSettings(
        environment=store.get(STRIPE_ENVIRONMENT, "test") or "test",
        stripe_publishable_key=store.get(STRIPE_PUBLISHABLE_KEY) or app_settings.STRIPE_PUBLISHABLE_KEY,
        stripe_secret_key=store.get(STRIPE_SECRET_KEY) or app_settings.STRIPE_SECRET_KEY,
        stripe_webhook_secret=store.get(STRIPE_WEBHOOK_SECRET) or app_settings.STRIPE_WEBHOOK_SECRET,
    )


# ---------------------------------------------------------------------------
# Admin payment-methods form
# ---------------------------------------------------------------------------

def mask_secret(value: Optional[str]) -> str:
    if not value:
        return ""
    if len(value) <= 12:
        return _MASK
    return f"{value[:8]}{_MASK}{value[-4:]}"


def _is_masked(value: Optional[str]) -> bool:
    return bool(value) and _MASK in value


def payment_methods_view(session: Session) -> Dict[str, Any]:
    pay = get_payment_settings(session)
    opay = get_opay_settings(session)
    return {
        "activeProvider": get_active_payment_provider(session).value,
        "environment": pay.environment or "test",
        "stripePublishableKey": pay.stripe_publishable_key or "",
        "stripeSecretKey": mask_secret(pay.stripe_secret_key),
        "stripeWebhookSecret": mask_secret(pay.stripe_webhook_secret),
        "opayApiKey": mask_secret(opay.api_key),
        "opayConfigured": opay.configured,
    }


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def update_payment_methods(session: Session, form: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate and persist the admin payment-methods form.

    Only values that differ from what is stored are written, so an encrypted
    secret is never re-encrypted from its own decrypted value. Masked secrets
    echoed back by the client count as unchanged.
    """
    data = {k: _clean(form.get(k)) for k in (
        "activeProvider",
        "environment",
        "stripePublishableKey",
        "stripeSecretKey",
        "stripeWebhookSecret",
        "opayApiKey",
    )}
    for secret_field in ("stripeSecretKey", "stripeWebhookSecret", "opayApiKey"):
        if _is_masked(data[secret_field]):
            data[secret_field] = ""

    provider = data["activeProvider"]
    if provider not in {p.value for p in PaymentProvider}:
        raise SettingsValidationError("Invalid payment provider selection", field="activeProvider", form=form)

    environment = data["environment"]
    if environment not in {"test", "live"}:
        raise SettingsValidationError("Invalid Stripe environment selection", field="environment", form=form)

    pk_prefix = "pk_test_" if environment == "test" else "pk_live_"
    sk_prefix = "sk_test_" if environment == "test" else "sk_live_"
    if data["stripePublishableKey"] and not data["stripePublishableKey"].startswith(pk_prefix):
        raise SettingsValidationError(
            f"Stripe publishable key must start with {pk_prefix}", field="stripePublishableKey", form=form
        )
    if data["stripeSecretKey"] and not data["stripeSecretKey"].startswith(sk_prefix):
        raise SettingsValidationError(
            f"Stripe secret key must start with {sk_prefix}", field="stripeSecretKey", form=form
        )
    if data["stripeWebhookSecret"] and not data["stripeWebhookSecret"].startswith("whsec_"):
        raise SettingsValidationError(
            "Stripe webhook secret must start with whsec_", field="stripeWebhookSecret", form=form
        )

    store = SettingsStore(session)
    current_opay = get_opay_settings(session)
    if provider == PaymentProvider.opaybd.value and not (data["opayApiKey"] or current_opay.api_key):
        raise SettingsValidationError(
            "Opaybd API Key is required when Opaybd is the active provider", field="opayApiKey", form=form
        )

    current = get_payment_settings(session)
    current_provider = get_active_payment_provider(session).value

    def changed(new: str, old: Optional[str]) -> bool:
        return bool(new) and new != _clean(old)

    entries = []
    if provider != current_provider or store.get(ACTIVE_PAYMENT_PROVIDER) is None:
        entries.append({"key": ACTIVE_PAYMENT_PROVIDER, "value": provider, "description": "Active payment provider (stripe or opaybd)"})
    if environment != _clean(store.get(STRIPE_ENVIRONMENT)):
        entries.append({"key": STRIPE_ENVIRONMENT, "value": environment, "description": "Stripe environment (test or live)"})
    if changed(data["stripePublishableKey"], current.stripe_publishable_key):
        entries.append({"key": STRIPE_PUBLISHABLE_KEY, "value": data["stripePublishableKey"], "description": "Stripe publishable key for frontend"})
    if changed(data["stripeSecretKey"], current.stripe_secret_key):
        entries.append({"key": STRIPE_SECRET_KEY, "value": data["stripeSecretKey"], "description": "Stripe secret key (encrypted)"})
    if changed(data["stripeWebhookSecret"], current.stripe_webhook_secret):
        entries.append({"key": STRIPE_WEBHOOK_SECRET, "value": data["stripeWebhookSecret"], "description": "Stripe webhook secret (encrypted)"})
    if changed(data["opayApiKey"], current_opay.api_key):
        entries.append({"key": OPAY_API_KEY, "value": data["opayApiKey"], "description": "Opaybd API key (encrypted)"})

    for entry in entries:
        entry["category"] = PAYMENT_CATEGORY
        entry["encrypted"] = entry["key"] in SECRET_KEYS

    if entries:
        store.set_many(entries)
        log.info("event=settings.payment_methods_updated keys=%s", ",".join(e["key"] for e in entries))
    clear_cache()
    return payment_methods_view(session)


__all__ = [
    "SettingsStore",
    "OpaySettings",
    "PaymentSettings",
    "clear_cache",
    "encrypt_value",
    "decrypt_value",
    "get_active_payment_provider",
    "get_opay_settings",
    "get_payment_settings",
    "mask_secret",
    "payment_methods_view",
    "update_payment_methods",
]
