"""Pricing plan storage and admin form handling."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ...core.errors import PlanValidationError
from ...models.billing import PricingPlan
from ...models.enums import BillingInterval, PlanTier
from ...models.types import utcnow

log = logging.getLogger(__name__)

PLANS_PER_PAGE = 15
FREE_PLAN_PRICE_ID = "free_plan_default"

_TIER_ORDER = case(
    {tier: idx for idx, tier in enumerate(PlanTier)},
    value=PricingPlan.tier,
    else_=len(PlanTier),
)

_FORM_FIELDS = (
    "name",
    "tier",
    "stripePriceId",
    "priceAmount",
    "priceAmountBdt",
    "currency",
    "billingInterval",
    "textGenerationLimit",
    "imageGenerationLimit",
    "videoGenerationLimit",
    "audioGenerationLimit",
    "features",
    "isActive",
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_amount(raw: str, field_name: str, label: str, form: Mapping[str, Any]) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise PlanValidationError(f"{label} must be a valid positive number", field=field_name, form=form)
    if value < 0:
        raise PlanValidationError(f"{label} must be a valid positive number", field=field_name, form=form)
    return value


def _parse_limit(raw: Any, field_name: str, form: Mapping[str, Any]) -> Optional[int]:
    """Blank means unlimited (None); 0 means no access."""
    text = _text(raw)
    if text == "":
        return None
    try:
        value = int(text)
    except ValueError:
        raise PlanValidationError("Generation limits must be whole numbers", field=field_name, form=form)
    if value < 0:
        raise PlanValidationError("Generation limits cannot be negative", field=field_name, form=form)
    return value


def _parse_features(raw: Any) -> List[str]:
    if isinstance(raw, (list, tuple)):
        lines = [str(item) for item in raw]
    else:
        lines = _text(raw).split("\n")
    return [line.strip() for line in lines if line.strip()]


def _parse_bool(raw: Any, default: bool = True) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    return _text(raw).lower() in {"1", "true", "yes", "on"}


@dataclass
class PlanForm:
    """Validated admin plan form. Build with ``PlanForm.parse``."""

    name: str
    tier: PlanTier
    stripe_price_id: str
    price_amount: int
    billing_interval: BillingInterval
    price_amount_bdt: Optional[int] = None
    currency: str = "usd"
    text_generation_limit: Optional[int] = None
    image_generation_limit: Optional[int] = None
    video_generation_limit: Optional[int] = None
    audio_generation_limit: Optional[int] = None
    features: List[str] = field(default_factory=list)
    is_active: bool = True

    @classmethod
    def parse(cls, form: Mapping[str, Any]) -> "PlanForm":
        echo = {k: form.get(k) for k in _FORM_FIELDS if k in form}
        name = _text(form.get("name"))
        tier = _text(form.get("tier"))
        price_id = _text(form.get("stripePriceId"))
        price = _text(form.get("priceAmount"))
        interval = _text(form.get("billingInterval"))

        if not name or not tier or not price_id or not price or not interval:
            missing = next(
                k for k, v in (
                    ("name", name),
                    ("tier", tier),
                    ("stripePriceId", price_id),
                    ("priceAmount", price),
                    ("billingInterval", interval),
                ) if not v
            )
            raise PlanValidationError("Required fields are missing", field=missing, form=echo)

        if tier not in {t.value for t in PlanTier}:
            raise PlanValidationError("Invalid tier selected", field="tier", form=echo)
        if interval not in {i.value for i in BillingInterval}:
            raise PlanValidationError("Invalid billing interval selected", field="billingInterval", form=echo)

        price_amount = _parse_amount(price, "priceAmount", "Price amount", echo)
        bdt_raw = _text(form.get("priceAmountBdt"))
        price_amount_bdt = (
            _parse_amount(bdt_raw, "priceAmountBdt", "BDT price amount", echo) if bdt_raw else None
        )

        return cls(
            name=name,
            tier=PlanTier(tier),
            stripe_price_id=price_id,
            price_amount=price_amount,
            price_amount_bdt=price_amount_bdt,
            currency=_text(form.get("currency")).lower() or "usd",
            billing_interval=BillingInterval(interval),
            text_generation_limit=_parse_limit(form.get("textGenerationLimit"), "textGenerationLimit", echo),
            image_generation_limit=_parse_limit(form.get("imageGenerationLimit"), "imageGenerationLimit", echo),
            video_generation_limit=_parse_limit(form.get("videoGenerationLimit"), "videoGenerationLimit", echo),
            audio_generation_limit=_parse_limit(form.get("audioGenerationLimit"), "audioGenerationLimit", echo),
            features=_parse_features(form.get("features")),
            is_active=_parse_bool(form.get("isActive"), default=True),
        )

    def values(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tier": self.tier,
            "stripe_price_id": self.stripe_price_id,
            "price_amount": self.price_amount,
            "price_amount_bdt": self.price_amount_bdt,
            "currency": self.currency,
            "billing_interval": self.billing_interval,
            "text_generation_limit": self.text_generation_limit,
            "image_generation_limit": self.image_generation_limit,
            "video_generation_limit": self.video_generation_limit,
            "audio_generation_limit": self.audio_generation_limit,
            "features": list(self.features),
            "is_active": self.is_active,
        }


@dataclass
class PlanPage:
    plans: List[PricingPlan]
    total: int
    page: int
    per_page: int = PLANS_PER_PAGE

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.total else 0


def _commit_plan(session: Session, plan: PricingPlan, form: PlanForm) -> PricingPlan:
    session.add(plan)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise PlanValidationError(
            "A plan with this price ID already exists",
            field="stripePriceId",
            form={"stripePriceId": form.stripe_price_id, "name": form.name},
        )
    session.refresh(plan)
    return plan


def create_plan(session: Session, form: PlanForm) -> PricingPlan:
    plan = PricingPlan(**form.values())
    plan = _commit_plan(session, plan, form)
    log.info("event=plans.created plan_id=%s tier=%s price_id=%s", plan.id, plan.tier.value, plan.stripe_price_id)
    return plan


def update_plan(session: Session, plan_id: UUID, form: PlanForm) -> Optional[PricingPlan]:
    plan = session.get(PricingPlan, plan_id)
    if plan is None:
        return None
    for key, value in form.values().items():
        setattr(plan, key, value)
    plan.updated_at = utcnow()
    plan = _commit_plan(session, plan, form)
    log.info("event=plans.updated plan_id=%s", plan.id)
    return plan


def delete_plan(session: Session, plan_id: UUID) -> bool:
    plan = session.get(PricingPlan, plan_id)
    if plan is None:
        return False
    session.delete(plan)
    session.commit()
    log.info("event=plans.deleted plan_id=%s", plan_id)
    return True


def get_plan(session: Session, plan_id: UUID) -> Optional[PricingPlan]:
    return session.get(PricingPlan, plan_id)


def get_plan_by_price_id(session: Session, price_id: str) -> Optional[PricingPlan]:
    return session.exec(select(PricingPlan).where(PricingPlan.stripe_price_id == price_id)).first()


def is_valid_price_id(session: Session, price_id: Optional[str]) -> bool:
    if not price_id:
        return False
    plan = get_plan_by_price_id(session, price_id)
    return plan is not None and plan.is_active


def get_plan_for_tier(session: Session, tier: PlanTier) -> Optional[PricingPlan]:
    """Active plan for a tier; monthly plans are preferred when several exist."""
    stmt = (
        select(PricingPlan)
        .where(PricingPlan.tier == PlanTier(tier), PricingPlan.is_active == True)  # noqa: E712
        .order_by(PricingPlan.billing_interval, PricingPlan.created_at)
    )
    return session.exec(stmt).first()


def list_plans(session: Session, page: int = 1) -> PlanPage:
    page = max(1, int(page or 1))
    total = session.exec(select(func.count()).select_from(PricingPlan)).one()
    stmt = (
        select(PricingPlan)
        .order_by(_TIER_ORDER, PricingPlan.name)
        .limit(PLANS_PER_PAGE)
        .offset((page - 1) * PLANS_PER_PAGE)
    )
    return PlanPage(plans=list(session.exec(stmt).all()), total=int(total or 0), page=page)


def list_active_plans(session: Session) -> List[PricingPlan]:
    stmt = (
        select(PricingPlan)
        .where(PricingPlan.is_active == True)  # noqa: E712
        .order_by(_TIER_ORDER, PricingPlan.price_amount)
    )
    return list(session.exec(stmt).all())


def seed_free_plan(session: Session) -> PricingPlan:
    """Create the default free plan; returns the existing row if already seeded."""
    existing = get_plan_by_price_id(session, FREE_PLAN_PRICE_ID)
    if existing is not None:
        return existing
    form = PlanForm(
        name="Free plan",
        tier=PlanTier.free,
        stripe_price_id=FREE_PLAN_PRICE_ID,
        price_amount=0,
        billing_interval=BillingInterval.month,
        text_generation_limit=50,
        image_generation_limit=25,
        video_generation_limit=10,
        audio_generation_limit=10,
        features=["Free plan"],
    )
    return create_plan(session, form)


__all__ = [
    "PLANS_PER_PAGE",
    "FREE_PLAN_PRICE_ID",
    "PlanForm",
    "PlanPage",
    "create_plan",
    "update_plan",
    "delete_plan",
    "get_plan",
    "get_plan_by_price_id",
    "is_valid_price_id",
    "get_plan_for_tier",
    "list_plans",
    "list_active_plans",
    "seed_free_plan",
]
