"""Opaybd regional payment gateway.

Opaybd has no recurring billing. A payment buys one period (month or year);
when the period lapses the subscription is flagged ``renewal_required`` and the
user is asked to pay again. Lapsed subscriptions are never cancelled here.

API: https://verify.opaybd.com/api/payment/{create,verify}, authenticated by
an ``API-KEY`` header.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit
from uuid import UUID

import requests
from sqlmodel import Session, select

from ...core.config import settings
from ...core.errors import ConfigurationError, NotFoundError, PaymentVerificationError, UpstreamProviderError
from ...models.billing import PaymentHistory, PricingPlan, Subscription
from ...models.enums import (
    BillingInterval,
    PaymentProvider,
    PaymentStatus,
    PlanTier,
    SubscriptionStatus,
)
from ...models.types import as_utc, utcnow
from ...models.user import User
from ..settings_store import get_opay_settings
from . import plans as plan_store
from .periods import period_end_for
from .types import ActiveSubscription, DecodedMetadata, Metadata, RawMetadata

log = logging.getLogger(__name__)

_CONFIGURE_HINT = "Opaybd credentials not configured. Please configure them in Admin > Payment Methods."

STATUS_COMPLETED = "COMPLETED"
STATUS_PENDING = "PENDING"
STATUS_ERROR = "ERROR"


@dataclass(frozen=True)
class CallbackParams:
    """Query parameters Opaybd appends to the callback redirect."""

    transaction_id: str
    payment_method: str = ""
    payment_amount: float = 0.0
    payment_fee: float = 0.0
    status: Optional[str] = None


@dataclass(frozen=True)
class OpayVerification:
    status: str
    transaction_id: str
    metadata: Metadata
    cus_name: Optional[str] = None
    cus_email: Optional[str] = None
    amount: Optional[str] = None
    payment_method: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    def metadata_value(self, key: str) -> Any:
        if isinstance(self.metadata, DecodedMetadata) and isinstance(self.metadata.value, dict):
            return self.metadata.value.get(key)
        return None


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Not an absolute URL: {url!r}")
    return f"{parts.scheme}://{parts.netloc}"


def to_minor_units(amount: Union[float, int, str, None]) -> int:
    """Major -> minor units, rounding half away from zero."""
    if amount in (None, ""):
        return 0
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def decode_metadata(raw: Any) -> Metadata:
    if isinstance(raw, str):
        try:
            return DecodedMetadata(json.loads(raw))
        except ValueError:
            log.error("event=opaybd.metadata_decode_failed raw=%r", raw[:200])
            return RawMetadata(raw)
    if isinstance(raw, dict):
        return DecodedMetadata(raw)
    return RawMetadata(raw)


class OpayService:
    def __init__(self, session: Session, http: Optional[requests.Session] = None):
        self.session = session
        self.http = http or requests.Session()
        self.base_url = settings.OPAYBD_API_BASE.rstrip("/")
        self.timeout = settings.OPAYBD_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        return get_opay_settings(self.session).configured

    def _headers(self) -> Dict[str, str]:
        opay = get_opay_settings(self.session)
        if not opay.api_key:
            raise ConfigurationError(_CONFIGURE_HINT, setting="opay_api_key")
        return {"Content-Type": "application/json", "API-KEY": opay.api_key}

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._headers()
        url = f"{self.base_url}/{path}"
        try:
            resp = self.http.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            log.error("event=opaybd.request_failed path=%s error=%s", path, exc)
            raise UpstreamProviderError("opaybd") from exc
        if not resp.ok:
            log.error("event=opaybd.http_error path=%s status=%s body=%s", path, resp.status_code, resp.text[:500])
            raise UpstreamProviderError("opaybd")
        try:
            data = resp.json()
        except ValueError as exc:
            log.error("event=opaybd.invalid_json path=%s", path)
            raise UpstreamProviderError("opaybd") from exc
        if not isinstance(data, dict):
            raise UpstreamProviderError("opaybd")
        return data

    # -- checkout ------------------------------------------------------------

    def create_payment(
        self,
        user_id: UUID,
        plan_id: UUID,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """Create a hosted payment and return its ``payment_url``."""
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        plan = self.session.get(PricingPlan, plan_id)
        if plan is None:
            raise NotFoundError("Pricing plan not found")

        if plan.price_amount_bdt is not None:
            amount = plan.price_amount_bdt / 100
        else:
            log.warning(
                "event=opaybd.bdt_price_missing plan=%s tier=%s; using primary price as fallback",
                plan.name,
                plan.tier.value,
            )
            amount = plan.price_amount / 100

        metadata = {
            "userId": str(user.id),
            "planId": str(plan.id),
            "priceId": price_id,
            "planTier": plan.tier.value,
            "originalAmountCents": plan.price_amount,
            "billingInterval": plan.billing_interval.value,
        }
        payload = {
            "cus_name": user.name or (user.email.split("@")[0] if user.email else "") or "Customer",
            "cus_email": user.email,
            "amount": amount,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "webhook_url": f"{origin_of(success_url)}/api/opaybd/webhook",
            "meta_data": json.dumps(metadata),
        }
        data = self._post("create", payload)
        if not data.get("status") or not data.get("payment_url"):
            log.error("event=opaybd.create_rejected user_id=%s message=%s", user.id, data.get("message"))
            raise UpstreamProviderError("opaybd", "Failed to create payment. Please try again.")
        log.info("event=billing.checkout_created provider=opaybd user_id=%s plan_id=%s", user.id, plan.id)
        return str(data["payment_url"])

    # -- verification --------------------------------------------------------

    def verify_payment(self, transaction_id: str) -> OpayVerification:
        data = self._post("verify", {"transaction_id": transaction_id})
        return OpayVerification(
            status=str(data.get("status") or STATUS_ERROR).upper(),
            transaction_id=str(data.get("transaction_id") or transaction_id),
            metadata=decode_metadata(data.get("metadata")),
            cus_name=data.get("cus_name"),
            cus_email=data.get("cus_email"),
            amount=data.get("amount"),
            payment_method=data.get("payment_method"),
        )

    def handle_payment_success(self, params: CallbackParams, now: Optional[datetime] = None) -> Subscription:
        """Re-verify a payment and credit the subscription it paid for.

        Repeat calls for the same transaction overwrite the period with a fresh
        computation from ``now``; there is no duplicate-transaction guard.
        """
        verification = self.verify_payment(params.transaction_id)
        if not verification.completed:
            raise PaymentVerificationError(f"Payment not completed. Status: {verification.status}")

        raw_user_id = verification.metadata_value("userId")
        raw_tier = verification.metadata_value("planTier")
        if not raw_user_id or not raw_tier:
            raise PaymentVerificationError("Invalid payment metadata")
        try:
            user_id = UUID(str(raw_user_id))
            tier = PlanTier(raw_tier)
        except ValueError as exc:
            raise PaymentVerificationError("Invalid payment metadata") from exc

        user = self.session.get(User, user_id)
        if user is None:
            raise PaymentVerificationError("Invalid payment metadata")

        price_id = str(verification.metadata_value("priceId") or "")
        raw_interval = verification.metadata_value("billingInterval")
        interval = BillingInterval.year if raw_interval == BillingInterval.year.value else BillingInterval.month

        now = as_utc(now) if now else utcnow()
        period_end = period_end_for(interval, now)
        amount_minor = to_minor_units(params.payment_amount)
        fee_minor = to_minor_units(params.payment_fee)

        sub = self.session.exec(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.payment_provider == PaymentProvider.opaybd,
            )
        ).first()
        if sub is not None:
            if sub.plan_tier != tier:
                sub.plan_changed_at = now
            sub.previous_plan_tier = sub.plan_tier
            sub.plan_tier = tier
            sub.stripe_price_id = price_id
            sub.status = SubscriptionStatus.active
            sub.current_period_start = now
            sub.current_period_end = period_end
            sub.renewal_required = False
            sub.opay_transaction_id = params.transaction_id
            sub.last_payment_amount = amount_minor
            sub.updated_at = now
            log.info("event=opaybd.subscription_renewed subscription_id=%s user_id=%s", sub.id, user_id)
        else:
            sub = Subscription(
                user_id=user_id,
                stripe_subscription_id=f"opay_{params.transaction_id}",
                stripe_price_id=price_id,
                plan_tier=tier,
                status=SubscriptionStatus.active,
                current_period_start=now,
                current_period_end=period_end,
                payment_provider=PaymentProvider.opaybd,
                opay_transaction_id=params.transaction_id,
                last_payment_amount=amount_minor,
                renewal_required=False,
                created_at=now,
                updated_at=now,
            )
            log.info("event=opaybd.subscription_created user_id=%s", user_id)
        self.session.add(sub)

        user.subscription_status = SubscriptionStatus.active
        user.plan_tier = tier
        self.session.add(user)
        self.session.flush()

        self.session.add(
            PaymentHistory(
                user_id=user_id,
                subscription_id=sub.id,
                amount=amount_minor,
                currency="bdt",
                status=PaymentStatus.succeeded,
                description=f"Subscription payment for {tier.value} plan",
                payment_method_type=params.payment_method or verification.payment_method,
                paid_at=now,
                payment_provider=PaymentProvider.opaybd,
                opay_transaction_id=params.transaction_id,
                opay_payment_method=params.payment_method or verification.payment_method,
                opay_payment_fee=fee_minor,
            )
        )
        self.session.commit()
        self.session.refresh(sub)
        log.info(
            "event=billing.payment_recorded provider=opaybd user_id=%s transaction_id=%s tier=%s",
            user_id,
            params.transaction_id,
            tier.value,
        )
        return sub

    # -- renewal -------------------------------------------------------------

    def get_subscription_needing_renewal(self, user_id: UUID) -> Optional[Subscription]:
        return self.session.exec(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.payment_provider == PaymentProvider.opaybd,
                Subscription.renewal_required == True,  # noqa: E712
                Subscription.status == SubscriptionStatus.active,
            )
        ).first()

    def mark_expired_subscriptions_for_renewal(self, now: Optional[datetime] = None) -> int:
        now = as_utc(now) if now else utcnow()
        expired = self.session.exec(
            select(Subscription).where(
                Subscription.payment_provider == PaymentProvider.opaybd,
                Subscription.status == SubscriptionStatus.active,
                Subscription.renewal_required == False,  # noqa: E712
                Subscription.current_period_end < now,
            )
        ).all()
        for sub in expired:
            sub.renewal_required = True
            sub.updated_at = now
            self.session.add(sub)
        if expired:
            self.session.commit()
            log.info("event=opaybd.marked_for_renewal count=%s", len(expired))
        return len(expired)

    def get_active_subscription(self, user_id: UUID) -> Optional[ActiveSubscription]:
        sub = self.session.exec(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.payment_provider == PaymentProvider.opaybd,
                Subscription.status == SubscriptionStatus.active,
            )
        ).first()
        if sub is None:
            return None
        plan = plan_store.get_plan_by_price_id(self.session, sub.stripe_price_id)
        return ActiveSubscription(subscription=sub, plan=plan, provider=PaymentProvider.opaybd)


__all__ = [
    "CallbackParams",
    "OpayService",
    "OpayVerification",
    "STATUS_COMPLETED",
    "STATUS_PENDING",
    "STATUS_ERROR",
    "decode_metadata",
    "origin_of",
    "to_minor_units",
]
