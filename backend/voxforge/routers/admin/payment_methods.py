from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from sqlmodel import Session

from ...core.auth import get_current_admin_user
from ...core.database import get_session
from ...models.user import User
from ...services import settings_store

log = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def get_payment_methods(
    admin_user: User = Depends(get_current_admin_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Current provider selection and credentials; secrets come back masked."""
    return settings_store.payment_methods_view(session)


@router.put("")
def update_payment_methods(
    form: Dict[str, Any] = Body(...),
    admin_user: User = Depends(get_current_admin_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    result = settings_store.update_payment_methods(session, form)
    log.info("event=admin.payment_methods_saved admin_id=%s provider=%s", admin_user.id, result["activeProvider"])
    return {"success": True, **result}
