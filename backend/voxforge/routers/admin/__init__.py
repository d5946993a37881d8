from fastapi import APIRouter
import logging

from . import payment_methods, plans

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])
router.include_router(payment_methods.router, prefix="/settings/payment-methods", tags=["Admin Payment Methods"])
router.include_router(plans.router, prefix="/settings/plans", tags=["Admin Plans"])
