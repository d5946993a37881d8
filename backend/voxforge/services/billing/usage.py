from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ...core import database
from ...core.errors import UsageLimitError
from ...models.billing import PricingPlan
from ...models.enums import PlanTier, UsageCategory
from ...models.types import as_utc, utcnow
from ...models.usage import UsageTracking, counter_column
from ...models.user import User
from . import plans as plan_store

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryUsage:
    used: int
    limit: Optional[int]

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)


def _period(now: Optional[datetime]) -> tuple:
    now = as_utc(now) if now else utcnow()
    return now.month, now.year


def _usage_row(session: Session, user_id: UUID, month: int, year: int) -> Optional[UsageTracking]:
    return session.exec(
        select(UsageTracking).where(
            UsageTracking.user_id == user_id,
            UsageTracking.month == month,
            UsageTracking.year == year,
        )
    ).first()


def plan_for_user(session: Session, user_id: UUID) -> Optional[PricingPlan]:
    user = session.get(User, user_id)
    tier = user.plan_tier if user is not None else PlanTier.free
    plan = plan_store.get_plan_for_tier(session, tier)
    if plan is None:
        log.warning(
            "event=usage.plan_missing user_id=%s tier=%s; limits not enforced (seed the free plan?)",
            user_id,
            PlanTier(tier).value,
        )
    return plan


def get_category_usage(
    session: Session,
    user_id: UUID,
    category: UsageCategory,
    now: Optional[datetime] = None,
) -> CategoryUsage:
    month, year = _period(now)
    row = _usage_row(session, user_id, month, year)
    plan = plan_for_user(session, user_id)
    return CategoryUsage(
        used=row.count_for(category) if row else 0,
        # No plan for the tier means no limit to enforce
        limit=plan.limit_for(category) if plan else None,
    )


def check_usage_limit(
    session: Session,
    user_id: UUID,
    category: UsageCategory,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Raise ``UsageLimitError`` when the monthly quota is used up.

    Returns the remaining quota (None = unlimited). Never writes.
    """
    category = UsageCategory(category)
    usage = get_category_usage(session, user_id, category, now)
    if usage.limit is not None and usage.used >= usage.limit:
        log.info(
            "event=usage.limit_reached user_id=%s category=%s used=%s limit=%s",
            user_id,
            category.value,
            usage.used,
            usage.limit,
        )
        raise UsageLimitError(category.value, limit=usage.limit, used=usage.used)
    return usage.remaining


def track_usage(
    session: Session,
    user_id: UUID,
    category: UsageCategory,
    now: Optional[datetime] = None,
) -> None:
    """Increment the current month's counter, creating the row on first use."""
    category = UsageCategory(category)
    month, year = _period(now)
    column = counter_column(category)
    stmt = (
        update(UsageTracking)
        .where(
            UsageTracking.user_id == user_id,
            UsageTracking.month == month,
            UsageTracking.year == year,
        )
        .values({column: getattr(UsageTracking, column) + 1, "updated_at": utcnow()})
    )
    result = session.exec(stmt)
    if result.rowcount == 0:
        session.add(UsageTracking(user_id=user_id, month=month, year=year, **{column: 1}))
        try:
            session.commit()
        except IntegrityError:
            # Another request created the row first
            session.rollback()
            session.exec(stmt)
            session.commit()
    else:
        session.commit()
    log.debug("event=usage.tracked user_id=%s category=%s period=%s-%02d", user_id, category.value, year, month)


def _track_usage_task(user_id: UUID, category: UsageCategory) -> None:
    try:
        with database.session_scope() as session:
            track_usage(session, user_id, category)
    except Exception:
        log.exception("event=usage.track_failed user_id=%s category=%s", user_id, UsageCategory(category).value)


def schedule_usage_tracking(background_tasks: BackgroundTasks, user_id: UUID, category: UsageCategory) -> None:
    """Queue the counter increment to run after the response is sent."""
    background_tasks.add_task(_track_usage_task, user_id, UsageCategory(category))


def get_usage_summary(session: Session, user_id: UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
    month, year = _period(now)
    row = _usage_row(session, user_id, month, year)
    plan = plan_for_user(session, user_id)
    categories: Dict[str, Any] = {}
    for category in UsageCategory:
        usage = CategoryUsage(
            used=row.count_for(category) if row else 0,
            limit=plan.limit_for(category) if plan else None,
        )
        categories[category.value] = {
            "used": usage.used,
            "limit": usage.limit,
            "remaining": usage.remaining,
        }
    return {
        "month": month,
        "year": year,
        "planTier": plan.tier.value if plan else None,
        "categories": categories,
    }


__all__ = [
    "CategoryUsage",
    "check_usage_limit",
    "track_usage",
    "schedule_usage_tracking",
    "get_usage_summary",
    "get_category_usage",
    "plan_for_user",
]
