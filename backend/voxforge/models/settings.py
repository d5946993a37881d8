from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from .types import UTCDateTime, utcnow


class AdminSetting(SQLModel, table=True):
    """Key/value setting editable from the admin console.

    ``value`` holds plain text or a JSON string. Rows with ``encrypted=True``
    store a Fernet token; ``voxforge.services.settings_store`` decrypts on read.
    """

    __tablename__ = "admin_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True, max_length=120)
    value: str = Field(default="")
    category: str = Field(default="general", index=True, max_length=40)
    encrypted: bool = Field(default=False)
    description: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


__all__ = ["AdminSetting"]
