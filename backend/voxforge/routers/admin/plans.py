from __future__ import annotations

import logging
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlmodel import Session

from ...core.auth import get_current_admin_user
from ...core.database import get_session
from ...models.billing import PricingPlanPublic
from ...models.user import User
from ...services.billing import plans as plan_store
from ...services.billing.plans import PlanForm

log = logging.getLogger(__name__)

router = APIRouter()


def _public(plan) -> Dict[str, Any]:
    return PricingPlanPublic.model_validate(plan).model_dump(mode="json")


@router.get("")
def list_plans(
    page: int = Query(default=1, ge=1),
    admin_user: User = Depends(get_current_admin_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    result = plan_store.list_plans(session, page)
    return {
        "plans": [_public(p) for p in result.plans],
        "totalPlans": result.total,
        "currentPage": result.page,
        "plansPerPage": result.per_page,
        "totalPages": result.total_pages,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_plan(
    form: Dict[str, Any] = Body(...),
    admin_user: User = Depends(get_current_admin_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    plan = plan_store.create_plan(session, PlanForm.parse(form))
    return _public(plan)


@router.post("/seed-free", status_code=status.HTTP_201_CREATED)
def seed_free_plan(
    admin_user: User = Depends(get_current_admin_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    return _public(plan_store.seed_free_plan(session))


@router.get("/{plan_id}")
def get_plan(
    plan_id: UUID,
    admin_user: User = Depends(get_current_admin_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    plan = plan_store.get_plan(session, plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Plan not found")
    return _public(plan)


@router.put("/{plan_id}")
def update_plan(
    plan_id: UUID,
    form: Dict[str, Any] = Body(...),
    admin_user: User = Depends(get_current_admin_user),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    plan = plan_store.update_plan(session, plan_id, PlanForm.parse(form))
    if plan is None:
        raise HTTPException(status_code=404, detail="Plan not found")
    return _public(plan)


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_plan(
    plan_id: UUID,
    admin_user: User = Depends(get_current_admin_user),
    session: Session = Depends(get_session),
) -> None:
    if not plan_store.delete_plan(session, plan_id):
        raise HTTPException(status_code=404, detail="Plan not found")
