"""Enumeration types used across billing, usage and media models.

This module centralizes all enum declarations to avoid duplication and make
it easier to maintain consistent values across the application.
"""
from enum import Enum


class PlanTier(str, Enum):
    """Subscription levels; each tier maps to an active pricing plan with limits."""
    free = "free"
    starter = "starter"
    pro = "pro"
    advanced = "advanced"


class BillingInterval(str, Enum):
    month = "month"
    year = "year"


class SubscriptionStatus(str, Enum):
    active = "active"
    canceled = "canceled"
    incomplete = "incomplete"
    incomplete_expired = "incomplete_expired"
    past_due = "past_due"
    trialing = "trialing"
    unpaid = "unpaid"


class PaymentProvider(str, Enum):
    stripe = "stripe"
    opaybd = "opaybd"


class PaymentStatus(str, Enum):
    succeeded = "succeeded"
    pending = "pending"
    failed = "failed"
    canceled = "canceled"
    refunded = "refunded"


class UsageCategory(str, Enum):
    """Independently metered generation categories."""
    text = "text"
    image = "image"
    video = "video"
    audio = "audio"


class MediaKind(str, Enum):
    speech = "speech"
    transcription = "transcription"
    voice_change = "voice_change"
    music = "music"
    sound_effect = "sound_effect"


class StorageLocation(str, Enum):
    local = "local"
    r2 = "r2"
