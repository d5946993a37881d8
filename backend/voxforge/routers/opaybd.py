"""Opaybd return flow: browser callback, manual verification and server webhook.

The callback always answers with a redirect back to the billing page; failures
are encoded in the query string rather than surfaced as error responses.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlmodel import Session

from ..core.auth import get_current_user
from ..core.database import get_session
from ..core.errors import PaymentOwnershipError
from ..models.user import User
from ..services.billing.opaybd import (
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_PENDING,
    CallbackParams,
    OpayService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/opaybd", tags=["billing:opaybd"])

BILLING_PATH = "/settings/billing"


def get_opay_service(session: Session = Depends(get_session)) -> OpayService:
    return OpayService(session)


def _redirect(query: str) -> RedirectResponse:
    return RedirectResponse(url=f"{BILLING_PATH}?{query}", status_code=302)


def _success_redirect(plan_tier: str) -> RedirectResponse:
    return _redirect(f"opay_success=true&plan_tier={quote(plan_tier or '', safe='')}")


def _failed_redirect() -> RedirectResponse:
    return _redirect("opay_failed=true")


def _pending_redirect(transaction_id: str) -> RedirectResponse:
    return _redirect(f"opay_pending=true&transaction_id={quote(transaction_id, safe='')}")


def _as_float(raw: Any) -> float:
    try:
        return float(raw) if raw not in (None, "") else 0.0
    except (TypeError, ValueError):
        return 0.0


@router.get("/callback")
def opaybd_callback(
    transactionId: Optional[str] = None,
    paymentMethod: Optional[str] = None,
    paymentAmount: Optional[str] = None,
    paymentFee: Optional[str] = None,
    status: Optional[str] = None,
    opay: OpayService = Depends(get_opay_service),
):
    """Browser return from the hosted Opaybd page."""
    logger.info(
        "event=opaybd.callback transaction_id=%s status=%s method=%s",
        transactionId,
        status,
        paymentMethod,
    )
    if not transactionId:
        logger.error("event=opaybd.callback_missing_transaction")
        return _redirect("error=missing_transaction&provider=opaybd")

    params = CallbackParams(
        transaction_id=transactionId,
        payment_method=paymentMethod or "unknown",
        payment_amount=_as_float(paymentAmount),
        payment_fee=_as_float(paymentFee),
        status=status,
    )

    if status == "success":
        try:
            sub = opay.handle_payment_success(params)
        except Exception as exc:
            logger.error("event=opaybd.callback_failed transaction_id=%s error=%s", transactionId, exc, exc_info=True)
            return _failed_redirect()
        return _success_redirect(sub.plan_tier.value)

    if status == "failed":
        logger.info("event=opaybd.payment_failed transaction_id=%s", transactionId)
        return _failed_redirect()

    # Pending or unknown status: ask the gateway directly
    try:
        verification = opay.verify_payment(transactionId)
        if verification.status == STATUS_COMPLETED:
            sub = opay.handle_payment_success(
                CallbackParams(
                    transaction_id=transactionId,
                    payment_method=verification.payment_method or params.payment_method,
                    payment_amount=_as_float(verification.amount) or params.payment_amount,
                    payment_fee=params.payment_fee,
                    status="success",
                )
            )
            return _success_redirect(sub.plan_tier.value)
        if verification.status == STATUS_ERROR:
            return _failed_redirect()
    except Exception as exc:
        logger.warning("event=opaybd.callback_verify_failed transaction_id=%s error=%s", transactionId, exc)
    return _pending_redirect(transactionId)


class VerifyRequest(BaseModel):
    transactionId: Optional[str] = None


@router.post("/verify")
def verify_opaybd_payment(
    req: VerifyRequest,
    current_user: User = Depends(get_current_user),
    opay: OpayService = Depends(get_opay_service),
):
    """Let a user re-check a payment that came back pending."""
    transaction_id = (req.transactionId or "").strip()
    if not transaction_id:
        raise HTTPException(status_code=400, detail="Transaction ID is required")

    try:
        verification = opay.verify_payment(transaction_id)
    except Exception as exc:
        logger.error("event=opaybd.verify_failed transaction_id=%s error=%s", transaction_id, exc)
        raise HTTPException(status_code=500, detail="Failed to verify payment. Please try again later.")

    if verification.status == STATUS_COMPLETED:
        owner = verification.metadata_value("userId")
        if str(owner or "") != str(current_user.id):
            logger.warning(
                "event=opaybd.verify_owner_mismatch transaction_id=%s user_id=%s",
                transaction_id,
                current_user.id,
            )
            raise PaymentOwnershipError("This payment does not belong to your account")
        try:
            sub = opay.handle_payment_success(
                CallbackParams(
                    transaction_id=transaction_id,
                    payment_method=verification.payment_method or "unknown",
                    payment_amount=_as_float(verification.amount),
                    payment_fee=0.0,
                    status="success",
                )
            )
        except Exception as exc:
            logger.error("event=opaybd.verify_credit_failed transaction_id=%s error=%s", transaction_id, exc, exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to verify payment. Please try again later.")
        return {
            "status": "success",
            "message": "Payment verified and processed successfully",
            "planTier": sub.plan_tier.value,
        }
    if verification.status == STATUS_PENDING:
        return {"status": "pending", "message": "Payment is still pending. Please try again later."}
    return {"status": "failed", "message": "Payment verification failed or was rejected."}


@router.post("/webhook")
def opaybd_webhook(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    opay: OpayService = Depends(get_opay_service),
):
    """Server-to-server notification. The body is only a hint; the payment is re-verified."""
    payload = payload or {}
    transaction_id = str(payload.get("transaction_id") or payload.get("transactionId") or "").strip()
    if not transaction_id:
        raise HTTPException(status_code=400, detail="Transaction ID is required")
    try:
        verification = opay.verify_payment(transaction_id)
        if verification.status == STATUS_COMPLETED:
            opay.handle_payment_success(
                CallbackParams(
                    transaction_id=transaction_id,
                    payment_method=verification.payment_method or str(payload.get("payment_method") or "unknown"),
                    payment_amount=_as_float(verification.amount),
                    payment_fee=_as_float(payload.get("payment_fee")),
                    status="success",
                )
            )
    except Exception as exc:
        logger.error("event=opaybd.webhook_failed transaction_id=%s error=%s", transaction_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook processing failed")
    return {"received": True, "status": verification.status}
