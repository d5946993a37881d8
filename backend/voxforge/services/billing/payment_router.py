"""Routes checkout and subscription lookups to the admin-selected provider."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlmodel import Session

from ...core.errors import ConfigurationError
from ...models.enums import PaymentProvider
from ...models.types import as_utc, utcnow
from ..settings_store import get_active_payment_provider
from .opaybd import OpayService, origin_of
from .periods import days_remaining
from .stripe_gateway import StripeService
from .types import ActiveSubscription, CheckoutResult, OpayCheckout, RenewalInfo

log = logging.getLogger(__name__)

OPAY_CALLBACK_PATH = "/api/opaybd/callback"
OPAY_CANCEL_PATH = "/settings/billing?canceled=true&provider=opaybd"


class PaymentRouter:
    def __init__(
        self,
        session: Session,
        stripe_service: Optional[StripeService] = None,
        opay_service: Optional[OpayService] = None,
    ):
        self.session = session
        self.stripe = stripe_service or StripeService(session)
        self.opay = opay_service or OpayService(session)

    def get_active_provider(self) -> PaymentProvider:
        return get_active_payment_provider(self.session)

    def create_checkout_session(
        self,
        user_id: UUID,
        price_id: str,
        plan_id: UUID,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutResult:
        provider = self.get_active_provider()
        log.info("event=billing.checkout_start provider=%s user_id=%s price_id=%s", provider.value, user_id, price_id)

        if provider == PaymentProvider.opaybd:
            if not self.opay.is_configured():
                raise ConfigurationError(
                    "Opaybd is selected but not configured. "
                    "Please configure Opaybd credentials in Admin > Payment Methods.",
                    setting="opay_api_key",
                )
            origin = origin_of(success_url)
            payment_url = self.opay.create_payment(
                user_id=user_id,
                plan_id=plan_id,
                price_id=price_id,
                success_url=f"{origin}{OPAY_CALLBACK_PATH}",
                cancel_url=f"{origin}{OPAY_CANCEL_PATH}",
            )
            return OpayCheckout(payment_url=payment_url)

        return self.stripe.create_checkout_session(
            user_id=user_id,
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
        )

    def get_active_subscription(self, user_id: UUID) -> Optional[ActiveSubscription]:
        """Active subscription across providers; Stripe wins when both exist."""
        return self.stripe.get_active_subscription(user_id) or self.opay.get_active_subscription(user_id)

    def check_renewal_required(self, user_id: UUID, now: Optional[datetime] = None) -> Optional[RenewalInfo]:
        sub = self.opay.get_subscription_needing_renewal(user_id)
        if sub is None:
            return None
        now = as_utc(now) if now else utcnow()
        return RenewalInfo(
            plan_tier=sub.plan_tier,
            days_remaining=days_remaining(sub.current_period_end, now),
            expires_at=sub.current_period_end,
        )


__all__ = ["PaymentRouter", "OPAY_CALLBACK_PATH", "OPAY_CANCEL_PATH"]
