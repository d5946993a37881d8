"""Stripe embedded checkout and subscription sync.

Credentials come from the settings store on every call (database first,
environment fallback), so an admin key change takes effect without a restart.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from uuid import UUID

import stripe
from sqlmodel import Session, select

from ...core.errors import ConfigurationError, NotFoundError, UpstreamProviderError
from ...models.billing import PaymentHistory, Subscription
from ...models.enums import PaymentProvider, PaymentStatus, PlanTier, SubscriptionStatus
from ...models.types import utcnow
from ...models.user import User
from ..settings_store import get_payment_settings
from . import plans as plan_store
from .types import ActiveSubscription, StripeCheckout

log = logging.getLogger(__name__)

STATUS_MAP = {
    "active": SubscriptionStatus.active,
    "trialing": SubscriptionStatus.trialing,
    "past_due": SubscriptionStatus.past_due,
    "canceled": SubscriptionStatus.canceled,
    "unpaid": SubscriptionStatus.unpaid,
    "incomplete": SubscriptionStatus.incomplete,
    "incomplete_expired": SubscriptionStatus.incomplete_expired,
}

_CONFIGURE_HINT = "Stripe is not configured. Add your Stripe keys in Admin > Payment Methods."


def _ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, key, default)


class StripeService:
    def __init__(self, session: Session):
        self.session = session

    # -- configuration -----------------------------------------------------

    def _api_key(self) -> str:
        key = get_payment_settings(self.session).stripe_secret_key
        if not key:
            raise ConfigurationError(_CONFIGURE_HINT, setting="stripe_secret_key")
        return key

    def is_configured(self) -> bool:
        return bool(get_payment_settings(self.session).stripe_secret_key)

    def publishable_key(self) -> Optional[str]:
        return get_payment_settings(self.session).stripe_publishable_key

    # -- checkout ------------------------------------------------------------

    def ensure_customer(self, user: User, api_key: str) -> str:
        if user.stripe_customer_id:
            return user.stripe_customer_id
        try:
            customer = stripe.Customer.create(
                api_key=api_key,
                email=user.email,
                name=user.name or None,
                metadata={"user_id": str(user.id)},
            )
        except stripe.StripeError as exc:
            log.error(
                "event=billing.customer_create_failed user_id=%s error=%s",
                user.id,
                exc,
                exc_info=True,
            )
            raise UpstreamProviderError("stripe", "Failed to create checkout session") from exc
        user.stripe_customer_id = customer.id
        self.session.add(user)
        self.session.commit()
        return customer.id

    def create_checkout_session(
        self,
        user_id: UUID,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> StripeCheckout:
        """Embedded subscription checkout; the caller's URLs are passed through unchanged."""
        api_key = self._api_key()
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        customer_id = self.ensure_customer(user, api_key)
        try:
            checkout = stripe.checkout.Session.create(
                api_key=api_key,
                mode="subscription",
                ui_mode="embedded",
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                return_url=success_url,
                metadata={"user_id": str(user.id), "cancel_url": cancel_url},
                subscription_data={"metadata": {"user_id": str(user.id)}},
            )
        except stripe.StripeError as exc:
            log.error("event=billing.checkout_failed provider=stripe user_id=%s error=%s", user.id, exc)
            raise UpstreamProviderError("stripe", "Failed to create checkout session") from exc

        client_secret = _get(checkout, "client_secret")
        if not client_secret:
            raise UpstreamProviderError("stripe", "Stripe did not return a client secret")
        log.info("event=billing.checkout_created provider=stripe user_id=%s price_id=%s", user.id, price_id)
        return StripeCheckout(client_secret=str(client_secret), session_id=str(_get(checkout, "id")))

    # -- subscriptions -------------------------------------------------------

    def get_active_subscription(self, user_id: UUID) -> Optional[ActiveSubscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.payment_provider == PaymentProvider.stripe,
                Subscription.status == SubscriptionStatus.active,
            )
            .order_by(Subscription.current_period_end.desc())
        )
        sub = self.session.exec(stmt).first()
        if sub is None:
            return None
        plan = plan_store.get_plan_by_price_id(self.session, sub.stripe_price_id)
        return ActiveSubscription(subscription=sub, plan=plan, provider=PaymentProvider.stripe)

    # -- webhook -------------------------------------------------------------

    def construct_event(self, payload: bytes, sig_header: Optional[str]):
        secret = get_payment_settings(self.session).stripe_webhook_secret
        if not secret:
            raise ConfigurationError(
                "Stripe webhook secret is not configured. Add it in Admin > Payment Methods.",
                setting="stripe_webhook_secret",
            )
        return stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)

    def _resolve_user(self, data: Any) -> Optional[User]:
        metadata = _get(data, "metadata") or {}
        raw_user_id = _get(metadata, "user_id")
        if raw_user_id:
            try:
                return self.session.get(User, UUID(str(raw_user_id)))
            except ValueError:
                log.error("event=billing.webhook_invalid_user_id value=%s", raw_user_id)
                return None
        customer_id = _get(data, "customer")
        if customer_id:
            return self.session.exec(select(User).where(User.stripe_customer_id == customer_id)).first()
        return None

    def sync_subscription(self, data: Any) -> Optional[Subscription]:
        """Upsert a local row from a ``customer.subscription.*`` payload."""
        user = self._resolve_user(data)
        if user is None:
            log.warning("event=billing.webhook_unmatched subscription_id=%s", _get(data, "id"))
            return None

        items = _get(_get(data, "items"), "data") or []
        first_item = items[0] if items else None
        price_id = _get(_get(first_item, "price"), "id") or "unknown"
        # Newer API versions report period bounds on the item
        period_start = _ts(_get(data, "current_period_start") or _get(first_item, "current_period_start"))
        period_end = _ts(_get(data, "current_period_end") or _get(first_item, "current_period_end"))
        now = utcnow()
        status = STATUS_MAP.get(_get(data, "status"), SubscriptionStatus.incomplete)

        plan = plan_store.get_plan_by_price_id(self.session, price_id)
        sub_id = str(_get(data, "id"))
        sub = self.session.exec(
            select(Subscription).where(Subscription.stripe_subscription_id == sub_id)
        ).first()
        tier = plan.tier if plan else (sub.plan_tier if sub else PlanTier.free)

        if sub is None:
            sub = Subscription(
                user_id=user.id,
                stripe_subscription_id=sub_id,
                stripe_price_id=price_id,
                plan_tier=tier,
                status=status,
                current_period_start=period_start or now,
                current_period_end=period_end or now,
                payment_provider=PaymentProvider.stripe,
            )
        else:
            if sub.plan_tier != tier:
                sub.previous_plan_tier = sub.plan_tier
                sub.plan_tier = tier
                sub.plan_changed_at = now
            sub.stripe_price_id = price_id
            sub.status = status
            if period_start:
                sub.current_period_start = period_start
            if period_end:
                sub.current_period_end = period_end
        sub.cancel_at_period_end = bool(_get(data, "cancel_at_period_end"))
        sub.canceled_at = _ts(_get(data, "canceled_at"))
        sub.ended_at = _ts(_get(data, "ended_at"))
        sub.updated_at = now

        user.subscription_status = status
        user.plan_tier = tier if status in (SubscriptionStatus.active, SubscriptionStatus.trialing) else PlanTier.free
        self.session.add(sub)
        self.session.add(user)
        self.session.commit()
        log.info(
            "event=billing.subscription_synced provider=stripe user_id=%s subscription_id=%s status=%s tier=%s",
            user.id,
            sub_id,
            status.value,
            tier.value,
        )
        return sub

    def record_invoice(self, data: Any, status: PaymentStatus) -> Optional[PaymentHistory]:
        user = self._resolve_user(data)
        sub_ref = _get(data, "subscription")
        sub = None
        if sub_ref:
            sub = self.session.exec(
                select(Subscription).where(Subscription.stripe_subscription_id == str(sub_ref))
            ).first()
        amount = _get(data, "amount_paid") if status == PaymentStatus.succeeded else _get(data, "amount_due")
        paid_at = _ts(_get(_get(data, "status_transitions"), "paid_at"))
        row = PaymentHistory(
            user_id=user.id if user else (sub.user_id if sub else None),
            subscription_id=sub.id if sub else None,
            amount=int(amount or 0),
            currency=str(_get(data, "currency") or "usd"),
            status=status,
            description=_get(data, "description") or "Subscription payment",
            payment_method_type="card",
            paid_at=paid_at if status == PaymentStatus.succeeded else None,
            payment_provider=PaymentProvider.stripe,
            stripe_payment_intent_id=_get(data, "payment_intent"),
            stripe_invoice_id=_get(data, "id"),
        )
        self.session.add(row)
        self.session.commit()
        log.info(
            "event=billing.payment_recorded provider=stripe invoice_id=%s status=%s",
            row.stripe_invoice_id,
            status.value,
        )
        return row


__all__ = ["StripeService", "STATUS_MAP"]
