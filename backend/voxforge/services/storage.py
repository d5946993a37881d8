"""Media object storage.

Cloudflare R2 (S3-compatible, via boto3) when R2 credentials are configured,
otherwise files under ``MEDIA_ROOT``. Every stored object is addressed by the
pair ``(StorageLocation, path)`` persisted on the ``MediaAsset`` row.
"""
from __future__ import annotations

import logging
import mimetypes
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import UUID, uuid4

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.config import settings
from ..models.enums import MediaKind, StorageLocation

log = logging.getLogger(__name__)

_R2_CLIENT = None
_R2_LOCK = threading.Lock()

_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/pcm": "pcm",
    "audio/basic": "ulaw",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "application/json": "json",
    "text/plain": "txt",
}


def r2_configured() -> bool:
    return bool(settings.R2_ACCOUNT_ID and settings.R2_ACCESS_KEY_ID and settings.R2_SECRET_ACCESS_KEY)


def _get_r2_client():
    """Cached boto3 S3 client pointed at the account's R2 endpoint."""
    global _R2_CLIENT
    with _R2_LOCK:
        if _R2_CLIENT is None:
            _R2_CLIENT = boto3.client(
                "s3",
                endpoint_url=f"https://{settings.R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
                aws_access_key_id=settings.R2_ACCESS_KEY_ID,
                aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
                region_name="auto",
            )
            log.info("[storage] R2 client initialized for bucket %s", settings.R2_BUCKET)
        return _R2_CLIENT


@dataclass(frozen=True)
class StoredObject:
    location: StorageLocation
    path: str
    size: int


class StorageError(Exception):
    pass


def extension_for(mime_type: str) -> str:
    ext = _EXTENSIONS.get(mime_type)
    if ext:
        return ext
    guessed = mimetypes.guess_extension(mime_type or "")
    return guessed.lstrip(".") if guessed else "bin"


class StorageService:
    def __init__(self, use_r2: Optional[bool] = None, media_root: Optional[str] = None):
        self.use_r2 = r2_configured() if use_r2 is None else use_r2
        self.bucket = settings.R2_BUCKET
        self.media_root = Path(media_root or settings.MEDIA_ROOT)

    @staticmethod
    def generate_filename(user_id: UUID, kind: MediaKind, mime_type: str) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return f"{user_id}/{MediaKind(kind).value}/{stamp}-{uuid4().hex[:12]}.{extension_for(mime_type)}"

    def _local_path(self, key: str) -> Path:
        root = self.media_root.resolve()
        path = (root / key).resolve()
        if root != path and root not in path.parents:
            raise StorageError(f"Path escapes media root: {key}")
        return path

    def upload(self, key: str, data: bytes, content_type: str) -> StoredObject:
        if self.use_r2:
            try:
                _get_r2_client().put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
            except (BotoCoreError, ClientError) as exc:
                log.error("[storage] R2 upload failed key=%s error=%s", key, exc)
                raise StorageError("Failed to store media") from exc
            return StoredObject(location=StorageLocation.r2, path=key, size=len(data))

        path = self._local_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return StoredObject(location=StorageLocation.local, path=key, size=len(data))

    def download(self, location: StorageLocation, key: str) -> bytes:
        if StorageLocation(location) == StorageLocation.r2:
            try:
                response = _get_r2_client().get_object(Bucket=self.bucket, Key=key)
                return response["Body"].read()
            except (BotoCoreError, ClientError) as exc:
                log.error("[storage] R2 download failed key=%s error=%s", key, exc)
                raise StorageError("Failed to read media") from exc
        path = self._local_path(key)
        if not path.is_file():
            raise StorageError(f"Media file missing: {key}")
        return path.read_bytes()

    def delete(self, location: StorageLocation, key: str) -> None:
        if StorageLocation(location) == StorageLocation.r2:
            try:
                _get_r2_client().delete_object(Bucket=self.bucket, Key=key)
            except (BotoCoreError, ClientError) as exc:
                raise StorageError(f"Failed to delete media: {key}") from exc
            return
        path = self._local_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            log.debug("[storage] Local file already gone: %s", key)
        except OSError as exc:
            raise StorageError(f"Failed to delete media: {key}") from exc

    def get_url(self, location: StorageLocation, key: str, expires_in: int = 3600) -> Optional[str]:
        """Presigned GET URL for R2 objects; None for local files (served by the API)."""
        if StorageLocation(location) != StorageLocation.r2:
            return None
        try:
            return _get_r2_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(expires_in),
            )
        except (BotoCoreError, ClientError) as exc:
            log.error("[storage] Presign failed key=%s error=%s", key, exc)
            return None


def get_storage_service() -> StorageService:
    return StorageService()


__all__ = [
    "StorageService",
    "StoredObject",
    "StorageError",
    "get_storage_service",
    "r2_configured",
    "extension_for",
]
