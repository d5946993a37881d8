from fastapi import APIRouter

from voxforge.config.logging import setup_sentry
from voxforge.exceptions import error_payload


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    deep = client.get("/api/health/deep")
    assert deep.status_code == 200
    assert deep.json()["db"] == "ok"


def test_error_envelope_for_http_errors(client):
    r = client.get("/api/billing/subscription")
    assert r.status_code == 401
    err = r.json()["error"]
    assert err["code"] == "http_error"
    assert err["details"] == {"status_code": 401}
    assert err["retryable"] is False
    assert r.headers["www-authenticate"] == "Bearer"


def test_unhandled_errors_hide_internals(app):
    from fastapi.testclient import TestClient

    router = APIRouter()

    @router.get("/api/boom")
    def boom():
        raise RuntimeError("database password is hunter2")

    app.include_router(router)
    with TestClient(app, raise_server_exceptions=False) as tc:
        r = tc.get("/api/boom")

    assert r.status_code == 500
    err = r.json()["error"]
    assert err["code"] == "internal_error"
    assert "hunter2" not in r.text
    assert err["error_id"]


def test_request_validation_envelope(client, user, auth_headers):
    r = client.post("/api/billing/checkout", json={"priceId": ["not", "a", "string"]}, headers=auth_headers(user))
    assert r.status_code == 422
    err = r.json()["error"]
    assert err["code"] == "request_validation_error"
    assert err["message"] == "Please check your input and try again."
    assert err["details"][0]["loc"][-1] == "priceId"


def test_error_payload_marks_retryable_codes():
    assert error_payload("upstream_error", "x")["error"]["retryable"] is True
    assert error_payload("validation_error", "x")["error"]["retryable"] is False


def test_sentry_disabled_in_test_env():
    assert setup_sentry("test", dsn="https://key@o0.ingest.sentry.io/1") is False


def test_debug_mode_only_for_local_development(app, monkeypatch):
    from voxforge.core.config import settings

    assert app.debug is False
    monkeypatch.setattr(settings, "APP_ENV", "dev")
    assert settings.debug_enabled is True
    monkeypatch.setattr(settings, "APP_ENV", "test")
    assert settings.is_dev_mode is True
    assert settings.debug_enabled is False
