from sqlmodel import SQLModel, Field
from pydantic import EmailStr
from datetime import datetime
from uuid import UUID, uuid4
from typing import Optional

from .enums import PlanTier, SubscriptionStatus
from .types import UTCDateTime, utcnow


class UserBase(SQLModel):
    """Base model with shared fields."""
    name: Optional[str] = Field(default=None, max_length=120)
    email: EmailStr = Field(unique=True, index=True)
    is_active: bool = True
    is_admin: bool = Field(default=False, description="Grants access to the admin settings console")
    stripe_customer_id: Optional[str] = Field(default=None, index=True)
    # Denormalized from the active subscription; written by the payment flows
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.incomplete)
    plan_tier: PlanTier = Field(default=PlanTier.free)


class User(UserBase, table=True):
    """The database model for a User."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class UserPublic(UserBase):
    """Schema for returning user data to the client."""
    id: UUID
    created_at: datetime
