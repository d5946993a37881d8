from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel
from sqlmodel import Session

from ..core.auth import get_current_user
from ..core.config import settings
from ..core.database import get_session
from ..core.errors import ConfigurationError
from ..models.billing import PricingPlanPublic, SubscriptionPublic
from ..models.user import User
from ..services.billing import plans as plan_store
from ..services.billing.opaybd import OpayService
from ..services.billing.payment_router import PaymentRouter
from ..services.billing.usage import get_usage_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])
internal_router = APIRouter(prefix="/internal/billing", tags=["internal:billing"])

BILLING_PATH = "/settings/billing"


def public_base_url(request: Request) -> str:
    return (settings.APP_BASE_URL or str(request.base_url)).rstrip("/")


def get_payment_router(session: Session = Depends(get_session)) -> PaymentRouter:
    return PaymentRouter(session)


class CheckoutRequest(BaseModel):
    priceId: Optional[str] = None


@router.post("/checkout")
def create_checkout_session(
    req: CheckoutRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    payment_router: PaymentRouter = Depends(get_payment_router),
):
    """Start checkout with whichever provider the admin has made active.

    Stripe answers ``{provider, clientSecret, sessionId}`` for embedded
    checkout; Opaybd answers ``{provider, redirectUrl}`` for a hosted page.
    """
    price_id = (req.priceId or "").strip()
    if not price_id:
        raise HTTPException(status_code=400, detail="Price ID is required")
    if not plan_store.is_valid_price_id(session, price_id):
        raise HTTPException(status_code=400, detail="Invalid price ID")
    plan = plan_store.get_plan_by_price_id(session, price_id)
    if plan is None:
        raise HTTPException(status_code=400, detail="Plan not found for price ID")

    base_url = public_base_url(request)
    try:
        result = payment_router.create_checkout_session(
            user_id=current_user.id,
            price_id=price_id,
            plan_id=plan.id,
            success_url=f"{base_url}{BILLING_PATH}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}{BILLING_PATH}?canceled=true",
        )
    except ConfigurationError:
        raise
    except Exception as exc:
        logger.error(
            "event=billing.checkout_failed user_id=%s price_id=%s error=%s",
            current_user.id,
            price_id,
            exc,
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to create checkout session")
    return result.to_response()


@router.get("/subscription")
def get_subscription(
    current_user: User = Depends(get_current_user),
    payment_router: PaymentRouter = Depends(get_payment_router),
):
    active = payment_router.get_active_subscription(current_user.id)
    if active is None:
        return {
            "provider": None,
            "planTier": current_user.plan_tier.value,
            "subscription": None,
            "plan": None,
        }
    return {
        "provider": active.provider.value,
        "planTier": active.subscription.plan_tier.value,
        "subscription": SubscriptionPublic.from_row(active.subscription).model_dump(mode="json"),
        "plan": PricingPlanPublic.model_validate(active.plan).model_dump(mode="json") if active.plan else None,
    }


@router.get("/renewal")
def get_renewal(
    current_user: User = Depends(get_current_user),
    payment_router: PaymentRouter = Depends(get_payment_router),
):
    """Renewal banner payload; called once per authenticated page load."""
    info = payment_router.check_renewal_required(current_user.id)
    if info is None:
        return {"renewalRequired": False}
    return info.to_response()


@router.get("/usage")
def get_usage(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return get_usage_summary(session, current_user.id)


@router.get("/plans")
def list_public_plans(session: Session = Depends(get_session)):
    return [PricingPlanPublic.model_validate(p).model_dump(mode="json") for p in plan_store.list_active_plans(session)]


@router.get("/config")
def get_billing_config(payment_router: PaymentRouter = Depends(get_payment_router)):
    provider = payment_router.get_active_provider()
    return {
        "provider": provider.value,
        "publishableKey": payment_router.stripe.publishable_key() if provider.value == "stripe" else None,
    }


# ============================================================================
# Internal endpoints (external cron)
# ============================================================================

def require_tasks_auth(x_tasks_auth: Optional[str] = Header(default=None)) -> None:
    expected = settings.TASKS_AUTH
    if not expected:
        raise HTTPException(status_code=503, detail="Internal task auth is not configured")
    if not x_tasks_auth or not hmac.compare_digest(x_tasks_auth, expected):
        raise HTTPException(status_code=401, detail="unauthorized")


@internal_router.post("/mark-expired", dependencies=[Depends(require_tasks_auth)])
def mark_expired_subscriptions(session: Session = Depends(get_session)):
    """Flag lapsed Opaybd subscriptions as renewal-required."""
    count = OpayService(session).mark_expired_subscriptions_for_renewal()
    logger.info("event=billing.mark_expired_run marked=%s", count)
    return {"marked": count}


__all__ = ["router", "internal_router", "public_base_url", "get_payment_router"]
