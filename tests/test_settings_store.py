import pytest
from sqlmodel import select

from voxforge.core.config import settings
from voxforge.core.errors import SettingsValidationError
from voxforge.models.enums import PaymentProvider
from voxforge.models.settings import AdminSetting
from voxforge.services import settings_store as store_mod
from voxforge.services.settings_store import (
    OPAY_API_KEY,
    STRIPE_SECRET_KEY,
    SettingsStore,
    get_active_payment_provider,
    get_payment_settings,
    mask_secret,
    update_payment_methods,
)

VALID_FORM = {
    "activeProvider": "stripe",
    "environment": "test",
    "stripePublishableKey": "pk_test_publishable123",
    "stripeSecretKey": "sk_test_secretvalue123",
    "stripeWebhookSecret": "whsec_webhookvalue123",
    "opayApiKey": "",
}


def _row(session, key):
    session.expire_all()
    return session.exec(select(AdminSetting).where(AdminSetting.key == key)).first()


def test_secrets_are_encrypted_at_rest(session):
    SettingsStore(session).set(STRIPE_SECRET_KEY, "sk_test_topsecret999", category="payment", encrypted=True)

    row = _row(session, STRIPE_SECRET_KEY)
    assert row.encrypted is True
    assert row.value != "sk_test_topsecret999"
    assert SettingsStore(session).get(STRIPE_SECRET_KEY) == "sk_test_topsecret999"


def test_empty_value_reads_as_default(session):
    store = SettingsStore(session)
    store.set("support_email", "", category="general")
    assert store.get("support_email", "fallback") == "fallback"
    assert store.get("missing_key") is None


def test_cache_serves_snapshot_until_cleared(session):
    store = SettingsStore(session)
    store.set("banner", "one")
    assert store.get("banner") == "one"

    # Write behind the store's back; the snapshot still answers
    row = _row(session, "banner")
    row.value = "two"
    session.add(row)
    session.commit()
    assert store.get("banner") == "one"

    store_mod.clear_cache()
    assert store.get("banner") == "two"


def test_undecryptable_secret_reads_as_missing(session, caplog):
    session.add(AdminSetting(key=OPAY_API_KEY, value="not-a-fernet-token", category="payment", encrypted=True))
    session.commit()
    store_mod.clear_cache()

    assert SettingsStore(session).get(OPAY_API_KEY) is None
    assert "event=settings.decrypt_failed" in caplog.text


def test_get_category(session):
    store = SettingsStore(session)
    store.set_many([
        {"key": "a", "value": "1", "category": "payment"},
        {"key": "b", "value": "2", "category": "general"},
    ])
    assert store.get_category("payment") == {"a": "1"}


def test_active_provider_defaults_to_stripe(session):
    assert get_active_payment_provider(session) == PaymentProvider.stripe
    SettingsStore(session).set("active_payment_provider", "paypal")
    assert get_active_payment_provider(session) == PaymentProvider.stripe


def test_payment_settings_fall_back_to_environment(session, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_fromenv000")
    assert get_payment_settings(session).stripe_secret_key == "sk_test_fromenv000"

    SettingsStore(session).set(STRIPE_SECRET_KEY, "sk_test_fromdb0000", encrypted=True)
    assert get_payment_settings(session).stripe_secret_key == "sk_test_fromdb0000"


def test_mask_secret():
    assert mask_secret("") == ""
    assert mask_secret("short") == "…"
    assert mask_secret("sk_test_1234567890abcd") == "sk_test_…abcd"


def test_update_payment_methods_saves_and_masks(session):
    view = update_payment_methods(session, VALID_FORM)

    assert view["activeProvider"] == "stripe"
    assert view["stripePublishableKey"] == "pk_test_publishable123"
    assert view["stripeSecretKey"] == "sk_test_…e123"
    assert view["opayConfigured"] is False
    assert get_payment_settings(session).stripe_webhook_secret == "whsec_webhookvalue123"


def test_masked_echo_keeps_stored_secret(session):
    view = update_payment_methods(session, VALID_FORM)
    before = _row(session, STRIPE_SECRET_KEY).value

    update_payment_methods(session, {**VALID_FORM, "stripeSecretKey": view["stripeSecretKey"]})

    assert _row(session, STRIPE_SECRET_KEY).value == before
    assert get_payment_settings(session).stripe_secret_key == "sk_test_secretvalue123"


@pytest.mark.parametrize(
    "override,field,message",
    [
        ({"activeProvider": "paypal"}, "activeProvider", "Invalid payment provider selection"),
        ({"environment": "staging"}, "environment", "Invalid Stripe environment selection"),
        ({"stripePublishableKey": "pk_live_abc"}, "stripePublishableKey", "Stripe publishable key must start with pk_test_"),
        ({"stripeSecretKey": "rk_test_abc"}, "stripeSecretKey", "Stripe secret key must start with sk_test_"),
        ({"stripeWebhookSecret": "secret"}, "stripeWebhookSecret", "Stripe webhook secret must start with whsec_"),
        (
            {"activeProvider": "opaybd"},
            "opayApiKey",
            "Opaybd API Key is required when Opaybd is the active provider",
        ),
    ],
)
def test_update_payment_methods_validation(session, override, field, message):
    form = {**VALID_FORM, **override}
    with pytest.raises(SettingsValidationError) as info:
        update_payment_methods(session, form)
    assert info.value.message == message
    assert info.value.field == field
    assert info.value.form["activeProvider"] == form["activeProvider"]
    assert session.exec(select(AdminSetting)).first() is None


def test_live_environment_requires_live_keys(session):
    form = {
        **VALID_FORM,
        "environment": "live",
        "stripePublishableKey": "pk_live_publishable123",
        "stripeSecretKey": "sk_live_secretvalue123",
    }
    assert update_payment_methods(session, form)["environment"] == "live"


def test_opaybd_selection_accepts_stored_key(session):
    update_payment_methods(session, {**VALID_FORM, "opayApiKey": "opay-key-abcdef123456"})
    view = update_payment_methods(session, {**VALID_FORM, "activeProvider": "opaybd"})
    assert view["activeProvider"] == "opaybd"
    assert view["opayConfigured"] is True
