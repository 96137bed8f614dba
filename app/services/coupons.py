"""Coupon store, validator and redemption.

Validation is side-effect free. Usage counters and usage rows are only
written by :meth:`Coupons.redeem`, which the webhook processor calls after a
payment is confirmed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import COUPON_VALIDATIONS
from app.models.billing import Coupon, CouponUsage, DiscountType
from app.schemas.billing import CouponCreate, CouponUpdate, normalize_coupon_code
from app.services.common import (
    apply_ordering,
    apply_pagination,
    as_utc,
    coerce_uuid,
    quantize_money,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


class RejectionCode:
    not_found = "not_found"
    inactive = "inactive"
    not_started = "not_started"
    expired = "expired"
    usage_limit_reached = "usage_limit_reached"
    user_limit_reached = "user_limit_reached"
    not_applicable = "not_applicable"
    below_minimum = "below_minimum"


@dataclass(frozen=True)
class CouponValidation:
    valid: bool
    code: str | None = None
    reason: str | None = None
    coupon: Coupon | None = None
    discount_amount: Decimal | None = None
    final_amount: Decimal | None = None

    @classmethod
    def reject(cls, code: str, reason: str) -> "CouponValidation":
        return cls(valid=False, code=code, reason=reason)


def compute_discount(coupon: Coupon, amount: Decimal) -> tuple[Decimal, Decimal]:
    """Return (discount, final) for an amount the coupon already accepted."""
    amount = quantize_money(amount)
    value = Decimal(coupon.discount_value)
    if coupon.discount_type == DiscountType.percentage:
        discount = amount * value / Decimal(100)
    else:
        discount = value
    if coupon.maximum_discount is not None:
        discount = min(discount, Decimal(coupon.maximum_discount))
    discount = quantize_money(discount)
    final = max(Decimal("0.00"), amount - discount)
    return discount, quantize_money(final)


def _applies_to_plugin(coupon: Coupon, plugin_id) -> bool:
    allowed = {str(item) for item in (coupon.applicable_plugins or [])}
    if not allowed:
        return True
    return plugin_id is not None and str(plugin_id) in allowed


def evaluate_coupon(
    coupon: Coupon | None,
    *,
    amount: Decimal,
    plugin_id=None,
    user_usage_count: int = 0,
    now: datetime | None = None,
) -> CouponValidation:
    """Run the coupon rules in order; the first failing rule wins."""
    if coupon is None:
        return CouponValidation.reject(RejectionCode.not_found, "Coupon not found")
    now = now or datetime.now(UTC)
    amount = quantize_money(amount)

    if not coupon.is_active:
        return CouponValidation.reject(RejectionCode.inactive, "Coupon is inactive")
    starts_at = as_utc(coupon.starts_at)
    if starts_at is not None and now < starts_at:
        return CouponValidation.reject(
            RejectionCode.not_started, "Coupon is not yet valid"
        )
    expires_at = as_utc(coupon.expires_at)
    if expires_at is not None and now > expires_at:
        return CouponValidation.reject(RejectionCode.expired, "Coupon has expired")
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        return CouponValidation.reject(
            RejectionCode.usage_limit_reached, "Coupon usage limit reached"
        )
    if (
        coupon.user_usage_limit is not None
        and user_usage_count >= coupon.user_usage_limit
    ):
        return CouponValidation.reject(
            RejectionCode.user_limit_reached,
            "Coupon per-user limit reached",
        )
    if not _applies_to_plugin(coupon, plugin_id):
        return CouponValidation.reject(
            RejectionCode.not_applicable, "Coupon is not applicable to this plugin"
        )
    if coupon.minimum_amount is not None and amount < Decimal(coupon.minimum_amount):
        return CouponValidation.reject(
            RejectionCode.below_minimum,
            f"Coupon requires a minimum purchase of {quantize_money(coupon.minimum_amount)}",
        )

    discount, final = compute_discount(coupon, amount)
    return CouponValidation(
        valid=True, coupon=coupon, discount_amount=discount, final_amount=final
    )


def _plugin_ids_to_json(values) -> list[str] | None:
    if values is None:
        return None
    return [str(value) for value in values]


class Coupons(ListResponseMixin):
    @staticmethod
    def _ensure_code_available(db: Session, code: str, exclude_id=None) -> None:
        stmt = select(Coupon.id).where(Coupon.code == code)
        if exclude_id is not None:
            stmt = stmt.where(Coupon.id != exclude_id)
        if db.scalar(stmt) is not None:
            raise HTTPException(status_code=409, detail="Coupon code already exists")

    @staticmethod
    def create(db: Session, payload: CouponCreate) -> Coupon:
        Coupons._ensure_code_available(db, payload.code)
        data = payload.model_dump()
        data["applicable_plugins"] = _plugin_ids_to_json(data["applicable_plugins"])
        item = Coupon(**data)
        db.add(item)
        db.commit()
        db.refresh(item)
        logger.info("Created Coupon: %s", item.id, extra={"coupon_code": item.code})
        return item

    @staticmethod
    def get(db: Session, coupon_id: str) -> Coupon:
        try:
            coupon_uuid = coerce_uuid(coupon_id)
        except ValueError:
            coupon_uuid = None
        item = db.get(Coupon, coupon_uuid) if coupon_uuid else None
        if not item:
            raise HTTPException(status_code=404, detail="Coupon not found")
        return item

    @staticmethod
    def get_by_code(db: Session, code: str) -> Coupon | None:
        return db.scalar(select(Coupon).where(Coupon.code == normalize_coupon_code(code)))

    @staticmethod
    def list(
        db: Session,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> tuple[list[Coupon], int]:
        conditions = []
        if is_active is not None:
            conditions.append(Coupon.is_active == is_active)
        stmt = select(Coupon).where(*conditions)
        total = db.scalar(
            select(func.count()).select_from(Coupon).where(*conditions)
        ) or 0
        stmt = apply_ordering(
            stmt,
            order_by,
            order_dir,
            {
                "created_at": Coupon.created_at,
                "code": Coupon.code,
                "usage_count": Coupon.usage_count,
            },
        )
        items = list(db.scalars(apply_pagination(stmt, limit, offset)).all())
        return items, total

    @staticmethod
    def update(db: Session, coupon_id: str, payload: CouponUpdate) -> Coupon:
        item = Coupons.get(db, coupon_id)
        data = payload.model_dump(exclude_unset=True)
        if data.get("code") is not None and data["code"] != item.code:
            Coupons._ensure_code_available(db, data["code"], exclude_id=item.id)
        if "applicable_plugins" in data:
            data["applicable_plugins"] = _plugin_ids_to_json(data["applicable_plugins"])
        for key, value in data.items():
            setattr(item, key, value)
        if (
            item.discount_type == DiscountType.percentage
            and Decimal(item.discount_value) > 100
        ):
            db.rollback()
            raise HTTPException(
                status_code=400, detail="Percentage discount cannot exceed 100"
            )
        starts_at, expires_at = as_utc(item.starts_at), as_utc(item.expires_at)
        if starts_at and expires_at and expires_at < starts_at:
            db.rollback()
            raise HTTPException(
                status_code=400, detail="expires_at must be after starts_at"
            )
        db.commit()
        db.refresh(item)
        logger.info("Updated Coupon: %s", item.id)
        return item

    @staticmethod
    def delete(db: Session, coupon_id: str) -> None:
        item = Coupons.get(db, coupon_id)
        item.is_active = False
        db.commit()
        logger.info("Deactivated Coupon: %s", item.id)

    @staticmethod
    def count_user_usages(db: Session, coupon_id, user_id) -> int:
        return db.scalar(
            select(func.count())
            .select_from(CouponUsage)
            .where(
                CouponUsage.coupon_id == coerce_uuid(coupon_id),
                CouponUsage.user_id == coerce_uuid(user_id),
            )
        ) or 0

    @staticmethod
    def list_usages(
        db: Session, coupon_id: str, limit: int, offset: int
    ) -> tuple[list[CouponUsage], int]:
        coupon = Coupons.get(db, coupon_id)
        condition = CouponUsage.coupon_id == coupon.id
        total = db.scalar(
            select(func.count()).select_from(CouponUsage).where(condition)
        ) or 0
        stmt = (
            select(CouponUsage)
            .where(condition)
            .order_by(CouponUsage.used_at.desc())
        )
        items = list(db.scalars(apply_pagination(stmt, limit, offset)).all())
        return items, total

    @staticmethod
    def validate(
        db: Session,
        code: str,
        user_id,
        amount: Decimal,
        plugin_id=None,
        now: datetime | None = None,
    ) -> CouponValidation:
        coupon = Coupons.get_by_code(db, code)
        usage_count = 0
        if coupon is not None:
            usage_count = Coupons.count_user_usages(db, coupon.id, user_id)
        result = evaluate_coupon(
            coupon,
            amount=amount,
            plugin_id=plugin_id,
            user_usage_count=usage_count,
            now=now,
        )
        COUPON_VALIDATIONS.labels("valid" if result.valid else result.code).inc()
        if not result.valid:
            logger.info(
                "Coupon rejected: %s",
                result.code,
                extra={"coupon_code": normalize_coupon_code(code), "actor_id": str(user_id)},
            )
        return result

    @staticmethod
    def redeem(
        db: Session,
        *,
        coupon_id,
        user_id,
        subscription_id,
        original_amount: Decimal,
        discount_amount: Decimal,
        final_amount: Decimal,
        strict: bool | None = None,
    ) -> CouponUsage | None:
        """Record a confirmed redemption and bump the coupon's usage count.

        With strict limits the increment is a single conditional UPDATE, so two
        concurrent redemptions cannot push ``usage_count`` past ``usage_limit``.
        A redemption that loses that race is logged and returns None.
        """
        if strict is None:
            strict = settings.coupon_strict_limits
        coupon_uuid = coerce_uuid(coupon_id)
        user_uuid = coerce_uuid(user_id)

        if strict:
            coupon = db.get(Coupon, coupon_uuid)
            if coupon is None:
                logger.warning("Redemption for unknown coupon %s", coupon_uuid)
                return None
            if (
                coupon.user_usage_limit is not None
                and Coupons.count_user_usages(db, coupon_uuid, user_uuid)
                >= coupon.user_usage_limit
            ):
                logger.warning(
                    "Coupon redemption rejected: per-user limit reached",
                    extra={"coupon_code": coupon.code, "actor_id": str(user_uuid)},
                )
                db.rollback()
                return None

        stmt = (
            update(Coupon)
            .where(Coupon.id == coupon_uuid)
            .values(usage_count=Coupon.usage_count + 1)
        )
        if strict:
            stmt = stmt.where(
                or_(
                    Coupon.usage_limit.is_(None),
                    Coupon.usage_count < Coupon.usage_limit,
                )
            )
        result = db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount == 0:
            db.rollback()
            logger.warning(
                "Coupon redemption rejected: usage limit reached for %s", coupon_uuid
            )
            return None

        usage = CouponUsage(
            coupon_id=coupon_uuid,
            user_id=user_uuid,
            subscription_id=coerce_uuid(subscription_id),
            original_amount=quantize_money(original_amount),
            discount_amount=quantize_money(discount_amount),
            final_amount=quantize_money(final_amount),
        )
        db.add(usage)
        db.commit()
        logger.info("Recorded coupon usage: %s", usage.id)
        return usage


coupons = Coupons()
