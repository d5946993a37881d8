from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from .enums import MediaKind, StorageLocation
from .types import UTCDateTime, utcnow


class MediaAssetBase(SQLModel):
    kind: MediaKind = Field(index=True)
    filename: str
    mime_type: str = Field(default="audio/mpeg")
    file_size: Optional[int] = Field(default=None)
    storage_location: StorageLocation = Field(default=StorageLocation.local)
    # Prompt for generated audio, transcript for transcriptions
    text: Optional[str] = Field(default=None)
    model: Optional[str] = Field(default=None)
    voice_id: Optional[str] = Field(default=None)
    duration: Optional[float] = Field(default=None, description="Seconds")


class MediaAsset(MediaAssetBase, table=True):
    __tablename__ = "media_asset"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    cloud_path: Optional[str] = Field(default=None, description="Object key or local path")
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class MediaAssetPublic(MediaAssetBase):
    id: UUID
    created_at: datetime


__all__ = ["MediaAsset", "MediaAssetBase", "MediaAssetPublic"]
