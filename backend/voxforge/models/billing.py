"""Pricing plans, subscriptions and payment history.

Subscription and PaymentHistory rows carry a ``payment_provider`` tag. The
provider-specific columns live on the same table, but callers read them
through ``provider_details``, which returns only the variant matching the tag.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from .types import UTCDateTime, utcnow
from .enums import (
    BillingInterval,
    PaymentProvider,
    PaymentStatus,
    PlanTier,
    SubscriptionStatus,
    UsageCategory,
)


class PricingPlanBase(SQLModel):
    name: str = Field(max_length=120)
    tier: PlanTier = Field(index=True)
    stripe_price_id: str = Field(unique=True, index=True, description="External price identifier")
    price_amount: int = Field(ge=0, description="Price in USD cents")
    price_amount_bdt: Optional[int] = Field(
        default=None,
        ge=0,
        description="Price in BDT paisa for Opaybd; null falls back to price_amount",
    )
    currency: str = Field(default="usd", max_length=8)
    billing_interval: BillingInterval = Field(default=BillingInterval.month)
    # null = unlimited, 0 = no access
    text_generation_limit: Optional[int] = Field(default=None, ge=0)
    image_generation_limit: Optional[int] = Field(default=None, ge=0)
    video_generation_limit: Optional[int] = Field(default=None, ge=0)
    audio_generation_limit: Optional[int] = Field(default=None, ge=0)
    is_active: bool = Field(default=True)


class PricingPlan(PricingPlanBase, table=True):
    __tablename__ = "pricing_plan"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    features: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    def limit_for(self, category: UsageCategory) -> Optional[int]:
        return getattr(self, f"{UsageCategory(category).value}_generation_limit")


class PricingPlanPublic(PricingPlanBase):
    id: UUID
    features: List[str] = []
    created_at: datetime
    updated_at: datetime


# --- Provider-specific detail variants ---------------------------------------

class StripeSubscriptionDetails(BaseModel):
    provider: Literal["stripe"] = "stripe"
    stripe_subscription_id: str


class OpaySubscriptionDetails(BaseModel):
    provider: Literal["opaybd"] = "opaybd"
    opay_transaction_id: Optional[str] = None
    renewal_required: bool = False
    last_payment_amount: Optional[int] = None
    renewal_reminder_sent_at: Optional[datetime] = None


SubscriptionDetails = Annotated[
    Union[StripeSubscriptionDetails, OpaySubscriptionDetails],
    PydanticField(discriminator="provider"),
]


class StripePaymentDetails(BaseModel):
    provider: Literal["stripe"] = "stripe"
    stripe_payment_intent_id: Optional[str] = None
    stripe_invoice_id: Optional[str] = None


class OpayPaymentDetails(BaseModel):
    provider: Literal["opaybd"] = "opaybd"
    opay_transaction_id: Optional[str] = None
    opay_payment_method: Optional[str] = None
    opay_payment_fee: Optional[int] = None


PaymentDetails = Annotated[
    Union[StripePaymentDetails, OpayPaymentDetails],
    PydanticField(discriminator="provider"),
]


class Subscription(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    # Opaybd rows use ``opay_<transactionId>`` so the column stays unique across providers
    stripe_subscription_id: str = Field(unique=True, index=True)
    stripe_price_id: str
    plan_tier: PlanTier
    previous_plan_tier: Optional[PlanTier] = Field(default=None)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.incomplete)
    current_period_start: datetime = Field(sa_type=UTCDateTime)
    current_period_end: datetime = Field(sa_type=UTCDateTime)
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    ended_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    plan_changed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    payment_provider: PaymentProvider = Field(default=PaymentProvider.stripe, index=True)
    # Opaybd-only columns; unset for Stripe rows
    opay_transaction_id: Optional[str] = Field(default=None)
    renewal_required: bool = Field(default=False)
    last_payment_amount: Optional[int] = Field(default=None, description="Minor units")
    renewal_reminder_sent_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def provider_details(self) -> Union[StripeSubscriptionDetails, OpaySubscriptionDetails]:
        if self.payment_provider == PaymentProvider.opaybd:
            return OpaySubscriptionDetails(
                opay_transaction_id=self.opay_transaction_id,
                renewal_required=bool(self.renewal_required),
                last_payment_amount=self.last_payment_amount,
                renewal_reminder_sent_at=self.renewal_reminder_sent_at,
            )
        return StripeSubscriptionDetails(stripe_subscription_id=self.stripe_subscription_id)


class SubscriptionPublic(BaseModel):
    id: UUID
    plan_tier: PlanTier
    status: SubscriptionStatus
    stripe_price_id: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    plan_changed_at: Optional[datetime] = None
    provider_details: SubscriptionDetails

    @classmethod
    def from_row(cls, sub: Subscription) -> "SubscriptionPublic":
        return cls(
            id=sub.id,
            plan_tier=sub.plan_tier,
            status=sub.status,
            stripe_price_id=sub.stripe_price_id,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
            cancel_at_period_end=sub.cancel_at_period_end,
            plan_changed_at=sub.plan_changed_at,
            provider_details=sub.provider_details,
        )


class PaymentHistory(SQLModel, table=True):
    """Append-only payment audit row; survives deletion of its user."""

    __tablename__ = "payment_history"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: Optional[UUID] = Field(default=None, foreign_key="user.id", index=True, ondelete="SET NULL")
    subscription_id: Optional[UUID] = Field(default=None, foreign_key="subscription.id", ondelete="SET NULL")
    amount: int = Field(description="Minor units")
    currency: str = Field(default="usd", max_length=8)
    status: PaymentStatus
    description: Optional[str] = Field(default=None)
    payment_method_type: Optional[str] = Field(default=None, description="card, bKash, Nagad, ...")
    paid_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    payment_provider: PaymentProvider = Field(default=PaymentProvider.stripe)
    stripe_payment_intent_id: Optional[str] = Field(default=None)
    stripe_invoice_id: Optional[str] = Field(default=None)
    opay_transaction_id: Optional[str] = Field(default=None, index=True)
    opay_payment_method: Optional[str] = Field(default=None)
    opay_payment_fee: Optional[int] = Field(default=None, description="Gateway fee in minor units")
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def provider_details(self) -> Union[StripePaymentDetails, OpayPaymentDetails]:
        if self.payment_provider == PaymentProvider.opaybd:
            return OpayPaymentDetails(
                opay_transaction_id=self.opay_transaction_id,
                opay_payment_method=self.opay_payment_method,
                opay_payment_fee=self.opay_payment_fee,
            )
        return StripePaymentDetails(
            stripe_payment_intent_id=self.stripe_payment_intent_id,
            stripe_invoice_id=self.stripe_invoice_id,
        )


__all__ = [
    "PricingPlan",
    "PricingPlanBase",
    "PricingPlanPublic",
    "Subscription",
    "SubscriptionPublic",
    "SubscriptionDetails",
    "StripeSubscriptionDetails",
    "OpaySubscriptionDetails",
    "PaymentHistory",
    "PaymentDetails",
    "StripePaymentDetails",
    "OpayPaymentDetails",
]
