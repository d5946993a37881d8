import logging

import stripe
from fastapi import APIRouter, HTTPException, Request

from ..core.database import session_scope
from ..models.enums import PaymentStatus
from ..services.billing.stripe_gateway import StripeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing/stripe", tags=["Billing Webhook"])

_INVOICE_EVENTS = {
    "invoice.paid": PaymentStatus.succeeded,
    "invoice.payment_failed": PaymentStatus.failed,
}


@router.post("/webhook")
async def stripe_webhook(request: Request):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    with session_scope() as session:
        service = StripeService(session)
        try:
            event = service.construct_event(payload, sig_header)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("event=billing.webhook_rejected error=%s", exc)
            raise HTTPException(status_code=400, detail="Invalid webhook signature")

        kind = event["type"]
        data = event["data"]["object"]
        logger.info("event=billing.webhook_received type=%s id=%s", kind, event.get("id"))

        if kind.startswith("customer.subscription."):
            service.sync_subscription(data)
        elif kind in _INVOICE_EVENTS:
            service.record_invoice(data, _INVOICE_EVENTS[kind])

    return {"received": True}
