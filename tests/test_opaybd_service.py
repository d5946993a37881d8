import json
from datetime import datetime, timezone

import pytest
from sqlmodel import select

from voxforge.core.errors import ConfigurationError, NotFoundError, PaymentVerificationError, UpstreamProviderError
from voxforge.models.billing import PaymentHistory, Subscription
from voxforge.models.enums import PaymentProvider, PaymentStatus, PlanTier, SubscriptionStatus
from voxforge.services.billing.opaybd import (
    CallbackParams,
    OpayService,
    decode_metadata,
    origin_of,
    to_minor_units,
)
from voxforge.services.billing.types import DecodedMetadata, RawMetadata

CREATE_URL = "https://verify.opaybd.com/api/payment/create"
VERIFY_URL = "https://verify.opaybd.com/api/payment/verify"
UTC = timezone.utc
NOW = datetime(2025, 1, 31, 8, 0, tzinfo=UTC)


def _verify_body(user_id, tier="pro", status="COMPLETED", interval="month", price_id="price_pro_month"):
    return {
        "status": status,
        "transaction_id": "TXN123",
        "cus_name": "Test User",
        "cus_email": "listener@example.com",
        "amount": "2300.00",
        "payment_method": "bKash",
        "metadata": json.dumps({
            "userId": str(user_id),
            "planId": "ignored",
            "priceId": price_id,
            "planTier": tier,
            "billingInterval": interval,
        }),
    }


def _success(txn="TXN123", amount=2300.0, fee=34.505):
    return CallbackParams(transaction_id=txn, payment_method="bKash", payment_amount=amount, payment_fee=fee, status="success")


def test_to_minor_units_rounds_half_up():
    assert to_minor_units(2300) == 230000
    assert to_minor_units("19.99") == 1999
    assert to_minor_units(0.125) == 13
    assert to_minor_units(None) == 0


def test_origin_of():
    assert origin_of("https://app.example.com/settings/billing?x=1") == "https://app.example.com"
    with pytest.raises(ValueError):
        origin_of("/settings/billing")


def test_decode_metadata_keeps_raw_on_bad_json(caplog):
    assert decode_metadata('{"userId": "u1"}') == DecodedMetadata({"userId": "u1"})
    assert decode_metadata("{not json") == RawMetadata("{not json")
    assert "event=opaybd.metadata_decode_failed" in caplog.text


def test_requests_need_api_key(session, requests_mock):
    with pytest.raises(ConfigurationError) as info:
        OpayService(session).verify_payment("TXN123")
    assert "Admin > Payment Methods" in info.value.message
    assert requests_mock.call_count == 0


def test_create_payment_uses_bdt_price(session, user, make_plan, opay_configured, requests_mock):
    plan = make_plan("pro", price_id="price_pro_month", price_amount_bdt=230000)
    requests_mock.post(CREATE_URL, json={"status": True, "payment_url": "https://pay.opaybd.com/p/abc"})

    url = OpayService(session).create_payment(
        user_id=user.id,
        plan_id=plan.id,
        price_id="price_pro_month",
        success_url="https://app.example.com/api/opaybd/callback",
        cancel_url="https://app.example.com/settings/billing?canceled=true&provider=opaybd",
    )

    assert url == "https://pay.opaybd.com/p/abc"
    sent = requests_mock.last_request
    assert sent.headers["API-KEY"] == opay_configured
    body = sent.json()
    assert body["amount"] == 2300
    assert body["cus_email"] == "listener@example.com"
    assert body["webhook_url"] == "https://app.example.com/api/opaybd/webhook"
    meta = json.loads(body["meta_data"])
    assert meta == {
        "userId": str(user.id),
        "planId": str(plan.id),
        "priceId": "price_pro_month",
        "planTier": "pro",
        "originalAmountCents": 1900,
        "billingInterval": "month",
    }


def test_create_payment_falls_back_to_primary_price(session, user, make_plan, opay_configured, requests_mock, caplog):
    plan = make_plan("pro", price_id="price_pro_month")
    requests_mock.post(CREATE_URL, json={"status": True, "payment_url": "https://pay.opaybd.com/p/abc"})

    OpayService(session).create_payment(user.id, plan.id, "price_pro_month", "https://a.example/cb", "https://a.example/x")

    assert requests_mock.last_request.json()["amount"] == 19
    assert "event=opaybd.bdt_price_missing" in caplog.text


def test_create_payment_rejected(session, user, make_plan, opay_configured, requests_mock):
    plan = make_plan("pro")
    requests_mock.post(CREATE_URL, json={"status": False, "message": "invalid key"})
    with pytest.raises(UpstreamProviderError):
        OpayService(session).create_payment(user.id, plan.id, plan.stripe_price_id, "https://a.example/cb", "https://a.example/x")


def test_create_payment_unknown_plan(session, user, opay_configured):
    from uuid import uuid4

    with pytest.raises(NotFoundError):
        OpayService(session).create_payment(user.id, uuid4(), "price_x", "https://a.example/cb", "https://a.example/x")


def test_gateway_http_error_is_upstream_error(session, opay_configured, requests_mock):
    requests_mock.post(VERIFY_URL, status_code=500, text="boom")
    with pytest.raises(UpstreamProviderError) as info:
        OpayService(session).verify_payment("TXN123")
    assert info.value.provider == "opaybd"


def test_handle_payment_success_creates_subscription(session, user, opay_configured, requests_mock):
    requests_mock.post(VERIFY_URL, json=_verify_body(user.id))

    sub = OpayService(session).handle_payment_success(_success(), now=NOW)

    assert sub.stripe_subscription_id == "opay_TXN123"
    assert sub.payment_provider == PaymentProvider.opaybd
    assert sub.plan_tier == PlanTier.pro
    assert sub.status == SubscriptionStatus.active
    assert sub.current_period_start == NOW
    assert sub.current_period_end == datetime(2025, 2, 28, 8, 0, tzinfo=UTC)
    assert sub.renewal_required is False
    assert sub.last_payment_amount == 230000

    session.refresh(user)
    assert user.plan_tier == PlanTier.pro
    assert user.subscription_status == SubscriptionStatus.active

    payment = session.exec(select(PaymentHistory)).one()
    assert payment.currency == "bdt"
    assert payment.amount == 230000
    assert payment.opay_payment_fee == 3451
    assert payment.status == PaymentStatus.succeeded
    assert payment.provider_details.opay_payment_method == "bKash"


def test_renewal_overwrites_period_and_tracks_plan_change(session, user, opay_configured, requests_mock):
    svc = OpayService(session)
    requests_mock.post(VERIFY_URL, json=_verify_body(user.id, tier="pro"))
    first = svc.handle_payment_success(_success(), now=NOW)
    first.renewal_required = True
    session.add(first)
    session.commit()

    # Same tier: previous tier recorded, change timestamp untouched
    later = datetime(2025, 3, 1, tzinfo=UTC)
    requests_mock.post(VERIFY_URL, json=_verify_body(user.id, tier="pro"))
    renewed = svc.handle_payment_success(_success(txn="TXN124"), now=later)
    assert renewed.id == first.id
    assert renewed.previous_plan_tier == PlanTier.pro
    assert renewed.plan_changed_at is None
    assert renewed.renewal_required is False
    assert renewed.current_period_end == datetime(2025, 4, 1, tzinfo=UTC)
    assert renewed.opay_transaction_id == "TXN124"

    upgraded_at = datetime(2025, 3, 5, tzinfo=UTC)
    requests_mock.post(VERIFY_URL, json=_verify_body(user.id, tier="advanced", interval="year"))
    upgraded = svc.handle_payment_success(_success(txn="TXN125"), now=upgraded_at)
    assert upgraded.plan_tier == PlanTier.advanced
    assert upgraded.previous_plan_tier == PlanTier.pro
    assert upgraded.plan_changed_at == upgraded_at
    assert upgraded.current_period_end == datetime(2026, 3, 5, tzinfo=UTC)

    assert len(session.exec(select(Subscription)).all()) == 1
    assert len(session.exec(select(PaymentHistory)).all()) == 3


def test_same_transaction_twice_recomputes_period_once(session, user, opay_configured, requests_mock):
    svc = OpayService(session)
    requests_mock.post(VERIFY_URL, json=_verify_body(user.id))
    svc.handle_payment_success(_success(), now=NOW)

    replay_at = datetime(2025, 2, 11, 9, 0, tzinfo=UTC)
    again = svc.handle_payment_success(_success(), now=replay_at)

    # Last write wins: the end is computed from the second call, not stacked on the first
    assert again.current_period_start == replay_at
    assert again.current_period_end == datetime(2025, 3, 11, 9, 0, tzinfo=UTC)
    session.expire_all()
    stored = session.exec(select(Subscription)).one()
    assert stored.current_period_end == datetime(2025, 3, 11, 9, 0, tzinfo=UTC)
    assert stored.opay_transaction_id == "TXN123"
    assert len(session.exec(select(PaymentHistory)).all()) == 2


def test_payment_history_survives_user_deletion(session, make_user, opay_configured, requests_mock):
    doomed = make_user("leaving@example.com")
    requests_mock.post(VERIFY_URL, json=_verify_body(doomed.id))
    sub = OpayService(session).handle_payment_success(_success(), now=NOW)
    session.delete(sub)
    session.commit()
    session.delete(doomed)
    session.commit()

    session.expire_all()
    payment = session.exec(select(PaymentHistory)).one()
    assert payment.user_id is None
    assert payment.subscription_id is None
    assert payment.amount == 230000


def test_handle_payment_success_requires_completed_status(session, user, opay_configured, requests_mock):
    requests_mock.post(VERIFY_URL, json=_verify_body(user.id, status="PENDING"))
    with pytest.raises(PaymentVerificationError) as info:
        OpayService(session).handle_payment_success(_success())
    assert info.value.message == "Payment not completed. Status: PENDING"
    assert session.exec(select(Subscription)).first() is None


@pytest.mark.parametrize("metadata", ["{broken", json.dumps({"planTier": "pro"}), json.dumps({"userId": "nope", "planTier": "pro"})])
def test_handle_payment_success_rejects_bad_metadata(session, user, opay_configured, requests_mock, metadata):
    requests_mock.post(VERIFY_URL, json={**_verify_body(user.id), "metadata": metadata})
    with pytest.raises(PaymentVerificationError) as info:
        OpayService(session).handle_payment_success(_success())
    assert info.value.message == "Invalid payment metadata"


def _opay_sub(session, user, end, renewal_required=False, status=SubscriptionStatus.active, txn="T1"):
    sub = Subscription(
        user_id=user.id,
        stripe_subscription_id=f"opay_{txn}",
        stripe_price_id="price_pro_month",
        plan_tier=PlanTier.pro,
        status=status,
        current_period_start=datetime(2025, 1, 1, tzinfo=UTC),
        current_period_end=end,
        payment_provider=PaymentProvider.opaybd,
        renewal_required=renewal_required,
    )
    session.add(sub)
    session.commit()
    return sub


def test_mark_expired_subscriptions_for_renewal(session, make_user):
    a, b, c = make_user(), make_user(), make_user()
    expired = _opay_sub(session, a, datetime(2025, 2, 1, tzinfo=UTC), txn="A")
    _opay_sub(session, b, datetime(2025, 3, 1, tzinfo=UTC), txn="B")
    _opay_sub(session, c, datetime(2025, 1, 15, tzinfo=UTC), status=SubscriptionStatus.canceled, txn="C")

    svc = OpayService(session)
    assert svc.mark_expired_subscriptions_for_renewal(now=datetime(2025, 2, 10, tzinfo=UTC)) == 1
    session.refresh(expired)
    assert expired.renewal_required is True
    assert expired.status == SubscriptionStatus.active

    # Already flagged rows are not counted again
    assert svc.mark_expired_subscriptions_for_renewal(now=datetime(2025, 2, 10, tzinfo=UTC)) == 0
    assert svc.get_subscription_needing_renewal(a.id).id == expired.id
    assert svc.get_subscription_needing_renewal(b.id) is None
