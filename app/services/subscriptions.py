import logging
from datetime import UTC, datetime, timedelta

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.billing import PlanType, Subscription, SubscriptionStatus
from app.services.common import apply_pagination, coerce_uuid, validate_enum
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


def plan_end_date(plan_type: PlanType, start: datetime) -> datetime | None:
    if plan_type == PlanType.monthly:
        return start + timedelta(days=settings.monthly_plan_days)
    if plan_type == PlanType.yearly:
        return start + timedelta(days=settings.yearly_plan_days)
    return None


class Subscriptions(ListResponseMixin):
    @staticmethod
    def list(
        db: Session,
        user_id: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Subscription], int]:
        conditions = [Subscription.user_id == coerce_uuid(user_id)]
        status_value = validate_enum(status, SubscriptionStatus, "status")
        if status_value is not None:
            conditions.append(Subscription.status == status_value)
        total = db.scalar(
            select(func.count()).select_from(Subscription).where(*conditions)
        ) or 0
        stmt = (
            select(Subscription)
            .where(*conditions)
            .order_by(Subscription.created_at.desc())
        )
        items = list(db.scalars(apply_pagination(stmt, limit, offset)).all())
        return items, total

    @staticmethod
    def cancel(db: Session, subscription_id: str, user_id: str) -> Subscription:
        try:
            subscription_uuid = coerce_uuid(subscription_id)
        except ValueError:
            subscription_uuid = None
        item = db.get(Subscription, subscription_uuid) if subscription_uuid else None
        if not item or item.user_id != coerce_uuid(user_id):
            raise HTTPException(status_code=404, detail="Subscription not found")
        if item.status == SubscriptionStatus.cancelled:
            return item
        if item.status == SubscriptionStatus.expired:
            raise HTTPException(
                status_code=400, detail="Cannot cancel an expired subscription"
            )
        item.status = SubscriptionStatus.cancelled
        item.auto_renew = False
        item.cancelled_at = datetime.now(UTC)
        db.commit()
        db.refresh(item)
        logger.info("Cancelled Subscription: %s", item.id)
        return item


subscriptions = Subscriptions()
