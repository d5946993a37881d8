import os
from importlib import import_module
from pathlib import Path
from typing import Iterator

import pytest

# Set before the first `voxforge` import; the settings object reads them once
_TEST_ENV = {
    "APP_ENV": "test",
    "DATABASE_URL": "sqlite://",
    "SECRET_KEY": "test-secret-key",
    "TASKS_AUTH": "tasks-secret",
    "ADMIN_EMAIL": "admin@example.com",
    "APP_BASE_URL": "https://app.example.com",
    "STRIPE_SECRET_KEY": "",
    "STRIPE_PUBLISHABLE_KEY": "",
    "STRIPE_WEBHOOK_SECRET": "",
    "ELEVENLABS_API_KEY": "eleven_dummy_key",
    "R2_ACCOUNT_ID": "",
    "R2_ACCESS_KEY_ID": "",
    "R2_SECRET_ACCESS_KEY": "",
    "SENTRY_DSN": "",
}
for _k, _v in _TEST_ENV.items():
    os.environ[_k] = _v


@pytest.fixture(scope="function")
def db_engine(tmp_path: Path):
    """Temporary file-backed SQLite engine patched into ``voxforge.core.database``.

    Everything that reaches the engine through the module (``get_session``,
    ``session_scope``, background usage tracking) picks up the patched value.
    """
    from sqlmodel import create_engine
    from voxforge.services.settings_store import clear_cache

    db = import_module("voxforge.core.database")
    old_engine = getattr(db, "engine")
    new_engine = db.enable_sqlite_foreign_keys(
        create_engine(
            f"sqlite:///{(tmp_path / 'test.db').as_posix()}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
    )
    setattr(db, "engine", new_engine)
    db.create_db_and_tables()
    clear_cache()
    try:
        yield new_engine
    finally:
        setattr(db, "engine", old_engine)
        clear_cache()
        new_engine.dispose()


@pytest.fixture(scope="function")
def session(db_engine) -> Iterator:
    from sqlmodel import Session as SQLSession

    with SQLSession(db_engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture(scope="function")
def media_root(tmp_path: Path) -> Path:
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture(scope="function")
def app(db_engine, media_root):
    """Fresh FastAPI app bound to the temp DB with local-only storage."""
    from voxforge.main import create_app
    from voxforge.services.storage import StorageService, get_storage_service

    application = create_app()
    application.dependency_overrides[get_storage_service] = lambda: StorageService(
        use_r2=False, media_root=str(media_root)
    )
    return application


@pytest.fixture(scope="function")
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as tc:
        yield tc


@pytest.fixture(scope="function")
def make_user(session):
    from voxforge.models.user import User

    counter = {"n": 0}

    def _make(email: str | None = None, **fields):
        counter["n"] += 1
        user = User(email=email or f"user{counter['n']}@example.com", name=fields.pop("name", "Test User"), **fields)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture(scope="function")
def user(make_user):
    return make_user("listener@example.com")


@pytest.fixture(scope="function")
def admin_user(make_user):
    return make_user("admin@example.com")


@pytest.fixture(scope="function")
def auth_headers():
    from voxforge.core.auth import create_access_token

    def _headers(u):
        return {"Authorization": f"Bearer {create_access_token(u.email)}"}

    return _headers


@pytest.fixture(scope="function")
def make_plan(session):
    from voxforge.services.billing.plans import PlanForm, create_plan
    from voxforge.models.enums import BillingInterval, PlanTier

    def _make(tier="pro", price_id=None, **fields):
        form = PlanForm(
            name=fields.pop("name", f"{tier.title()} plan"),
            tier=PlanTier(tier),
            stripe_price_id=price_id or f"price_{tier}_{fields.get('billing_interval', 'month')}",
            price_amount=fields.pop("price_amount", 1900),
            billing_interval=BillingInterval(fields.pop("billing_interval", "month")),
            **fields,
        )
        return create_plan(session, form)

    return _make


@pytest.fixture(scope="function")
def opay_configured(session):
    """Opaybd selected as the active provider with an API key on file."""
    from voxforge.services.settings_store import (
        ACTIVE_PAYMENT_PROVIDER,
        OPAY_API_KEY,
        PAYMENT_CATEGORY,
        SettingsStore,
    )

    SettingsStore(session).set_many([
        {"key": ACTIVE_PAYMENT_PROVIDER, "value": "opaybd", "category": PAYMENT_CATEGORY},
        {"key": OPAY_API_KEY, "value": "opay-live-key-123456", "category": PAYMENT_CATEGORY},
    ])
    return "opay-live-key-123456"


@pytest.fixture(scope="function")
def stripe_configured(session):
    from voxforge.services.settings_store import (
        PAYMENT_CATEGORY,
        STRIPE_PUBLISHABLE_KEY,
        STRIPE_SECRET_KEY,
        STRIPE_WEBHOOK_SECRET,
        SettingsStore,
    )

    SettingsStore(session).set_many([
        {"key": STRIPE_PUBLISHABLE_KEY, "value": "pk_test_abc123456789", "category": PAYMENT_CATEGORY},
        {"key": STRIPE_SECRET_KEY, "value": "sk_test_abc123456789", "category": PAYMENT_CATEGORY},
        {"key": STRIPE_WEBHOOK_SECRET, "value": "whsec_abc123456789", "category": PAYMENT_CATEGORY},
    ])
    return "sk_test_abc123456789"
