from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .enums import UsageCategory
from .types import UTCDateTime, utcnow


class UsageTracking(SQLModel, table=True):
    """Per-user monthly generation counters.

    One row per (user, month, year). Rows are created lazily on the first
    tracked generation of a month, so a new month starts at zero without any
    reset job.
    """

    __tablename__ = "usage_tracking"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    month: int = Field(ge=1, le=12)
    year: int
    text_generation_count: int = Field(default=0)
    image_generation_count: int = Field(default=0)
    video_generation_count: int = Field(default=0)
    audio_generation_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    __table_args__ = (
        UniqueConstraint("user_id", "month", "year", name="uq_usage_tracking_user_period"),
    )

    def count_for(self, category: UsageCategory) -> int:
        return int(getattr(self, f"{UsageCategory(category).value}_generation_count") or 0)


def counter_column(category: UsageCategory) -> str:
    return f"{UsageCategory(category).value}_generation_count"


__all__ = ["UsageTracking", "counter_column"]
