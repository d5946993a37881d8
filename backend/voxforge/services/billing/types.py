"""Result types shared by the payment gateways and the router.

Each checkout result carries a literal ``provider`` tag so callers can branch
on it without probing for optional fields.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional, Union

from ...models.billing import PricingPlan, Subscription
from ...models.enums import PaymentProvider, PlanTier


@dataclass(frozen=True)
class StripeCheckout:
    client_secret: str
    session_id: str
    provider: Literal["stripe"] = "stripe"

    def to_response(self) -> dict:
        return {"provider": self.provider, "clientSecret": self.client_secret, "sessionId": self.session_id}


@dataclass(frozen=True)
class OpayCheckout:
    payment_url: str
    provider: Literal["opaybd"] = "opaybd"

    def to_response(self) -> dict:
        return {"provider": self.provider, "redirectUrl": self.payment_url}


CheckoutResult = Union[StripeCheckout, OpayCheckout]


@dataclass(frozen=True)
class ActiveSubscription:
    subscription: Subscription
    plan: Optional[PricingPlan]
    provider: PaymentProvider


@dataclass(frozen=True)
class RenewalInfo:
    plan_tier: PlanTier
    days_remaining: int
    expires_at: datetime

    def to_response(self) -> dict:
        return {
            "renewalRequired": True,
            "planTier": self.plan_tier.value,
            "daysRemaining": self.days_remaining,
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class DecodedMetadata:
    value: Any


@dataclass(frozen=True)
class RawMetadata:
    """Metadata that could not be decoded; kept verbatim for diagnostics."""

    raw: Any


Metadata = Union[DecodedMetadata, RawMetadata]


__all__ = [
    "StripeCheckout",
    "OpayCheckout",
    "CheckoutResult",
    "ActiveSubscription",
    "RenewalInfo",
    "DecodedMetadata",
    "RawMetadata",
    "Metadata",
]
