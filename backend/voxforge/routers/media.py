from __future__ import annotations

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse, Response
from sqlmodel import Session, select

from ..core.auth import get_current_user
from ..core.database import get_session
from ..models.enums import StorageLocation
from ..models.media import MediaAsset, MediaAssetPublic
from ..models.user import User
from ..services.storage import StorageError, StorageService, get_storage_service

log = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["Media Library"])


def _owned_asset(session: Session, asset_id: UUID, user: User) -> MediaAsset:
    asset = session.get(MediaAsset, asset_id)
    # Other users' assets are reported as missing
    if asset is None or asset.user_id != user.id:
        raise HTTPException(status_code=404, detail="Media not found")
    return asset


@router.get("", response_model=List[MediaAssetPublic])
def list_media(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return session.exec(
        select(MediaAsset)
        .where(MediaAsset.user_id == current_user.id)
        .order_by(MediaAsset.created_at.desc())  # type: ignore[attr-defined]
    ).all()


@router.get("/{asset_id}")
def get_media(
    asset_id: UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: StorageService = Depends(get_storage_service),
):
    """Presigned redirect for R2 objects, raw bytes for local files."""
    asset = _owned_asset(session, asset_id, current_user)
    if asset.storage_location == StorageLocation.r2:
        url = storage.get_url(asset.storage_location, asset.cloud_path or "")
        if not url:
            raise HTTPException(status_code=502, detail="Media is temporarily unavailable")
        return RedirectResponse(url=url, status_code=307)
    try:
        data = storage.download(asset.storage_location, asset.cloud_path or "")
    except StorageError as exc:
        log.error("event=media.read_failed asset_id=%s error=%s", asset.id, exc)
        raise HTTPException(status_code=404, detail="Media file not found")
    return Response(
        content=data,
        media_type=asset.mime_type,
        headers={"Content-Disposition": f'inline; filename="{asset.filename}"'},
    )


@router.delete("/{asset_id}", status_code=204)
def delete_media(
    asset_id: UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: StorageService = Depends(get_storage_service),
):
    asset = _owned_asset(session, asset_id, current_user)
    if asset.cloud_path:
        try:
            storage.delete(asset.storage_location, asset.cloud_path)
        except StorageError as exc:
            log.warning("event=media.storage_delete_failed asset_id=%s error=%s", asset.id, exc)
    session.delete(asset)
    session.commit()
    log.info("event=media.deleted asset_id=%s user_id=%s", asset_id, current_user.id)
