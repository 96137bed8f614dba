"""Tests for coupon CRUD, validation against the store, and redemption."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import get_type_hints

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from app.models.billing import Coupon, CouponUsage, DiscountType
from app.schemas.billing import CouponCreate, CouponUpdate
from app.services.coupons import RejectionCode, coupons


def _create_payload(**overrides) -> CouponCreate:
    data = {
        "code": "  welcome10 ",
        "name": "Welcome",
        "discount_type": "percentage",
        "discount_value": "10",
    }
    data.update(overrides)
    return CouponCreate(**data)


def test_create_normalizes_code(db_session):
    coupon = coupons.create(db_session, _create_payload())
    assert coupon.code == "WELCOME10"
    assert coupon.usage_count == 0
    assert coupon.is_active is True


def test_create_duplicate_code_conflicts(db_session):
    coupons.create(db_session, _create_payload())
    with pytest.raises(HTTPException) as exc:
        coupons.create(db_session, _create_payload(code="WELCOME10"))
    assert exc.value.status_code == 409


def test_create_rejects_percentage_over_100():
    with pytest.raises(ValidationError):
        _create_payload(discount_value="150")


def test_create_rejects_inverted_window():
    with pytest.raises(ValidationError):
        _create_payload(
            starts_at="2026-02-01T00:00:00Z", expires_at="2026-01-01T00:00:00Z"
        )


def test_get_unknown_or_malformed_id_is_404(db_session):
    for value in (str(uuid.uuid4()), "not-a-uuid"):
        with pytest.raises(HTTPException) as exc:
            coupons.get(db_session, value)
        assert exc.value.status_code == 404


def test_get_by_code_is_case_insensitive(db_session, coupon):
    assert coupons.get_by_code(db_session, " save20 ").id == coupon.id


def test_update_switching_to_percentage_checks_bound(db_session, coupon_factory):
    coupon = coupon_factory(discount_type=DiscountType.fixed, discount_value=Decimal("150"))
    with pytest.raises(HTTPException) as exc:
        coupons.update(db_session, str(coupon.id), CouponUpdate(discount_type="percentage"))
    assert exc.value.status_code == 400


def test_update_rejects_inverted_window(db_session, coupon_factory):
    coupon = coupon_factory(starts_at=datetime(2030, 1, 2, tzinfo=UTC))
    with pytest.raises(HTTPException) as exc:
        coupons.update(
            db_session,
            str(coupon.id),
            CouponUpdate(expires_at="2030-01-01T00:00:00Z"),
        )
    assert exc.value.status_code == 400
    db_session.refresh(coupon)
    assert coupon.expires_at is None


@pytest.mark.parametrize("field", ["code", "name", "discount_type", "discount_value", "is_active"])
def test_update_rejects_null_for_required_columns(field):
    with pytest.raises(ValidationError):
        CouponUpdate(**{field: None})


def test_update_rejects_blank_code():
    with pytest.raises(ValidationError):
        CouponUpdate(code="   ")


def test_update_normalizes_code_and_allows_clearing_optional_fields(db_session, coupon):
    updated = coupons.update(
        db_session,
        str(coupon.id),
        CouponUpdate(code=" spring25 ", user_usage_limit=None),
    )
    assert updated.code == "SPRING25"
    assert updated.user_usage_limit is None


def test_list_usages_return_annotation_resolves():
    hints = get_type_hints(coupons.list_usages)
    assert hints["return"] == tuple[list[CouponUsage], int]


def test_delete_deactivates(db_session, coupon):
    coupons.delete(db_session, str(coupon.id))
    db_session.refresh(coupon)
    assert coupon.is_active is False


def test_list_filters_and_counts(db_session, coupon_factory):
    coupon_factory(is_active=True)
    coupon_factory(is_active=False)
    items, total = coupons.list(db_session, True, "created_at", "desc", 50, 0)
    assert total == 1
    assert all(item.is_active for item in items)


def test_validate_unknown_code(db_session, user):
    result = coupons.validate(db_session, "NOPE", user.id, Decimal("10.00"))
    assert result.valid is False
    assert result.code == RejectionCode.not_found


def test_validate_counts_previous_usages(db_session, user, coupon):
    db_session.add(
        CouponUsage(
            coupon_id=coupon.id,
            user_id=user.id,
            original_amount=Decimal("100.00"),
            discount_amount=Decimal("20.00"),
            final_amount=Decimal("80.00"),
        )
    )
    db_session.commit()
    result = coupons.validate(db_session, "save20", user.id, Decimal("100.00"))
    assert result.code == RejectionCode.user_limit_reached


def test_validate_has_no_side_effects(db_session, user, coupon):
    coupons.validate(db_session, "SAVE20", user.id, Decimal("100.00"))
    db_session.refresh(coupon)
    assert coupon.usage_count == 0
    assert db_session.query(CouponUsage).count() == 0


def _redeem(db_session, coupon, user, **kwargs):
    return coupons.redeem(
        db_session,
        coupon_id=coupon.id,
        user_id=user.id,
        subscription_id=None,
        original_amount=Decimal("100.00"),
        discount_amount=Decimal("20.00"),
        final_amount=Decimal("80.00"),
        **kwargs,
    )


def test_redeem_records_usage_and_increments(db_session, user, coupon):
    usage = _redeem(db_session, coupon, user)
    assert usage is not None
    db_session.refresh(coupon)
    assert coupon.usage_count == 1
    assert usage.final_amount == Decimal("80.00")


def test_strict_redeem_stops_at_global_limit(db_session, user, admin_user, coupon_factory):
    coupon = coupon_factory(usage_limit=1, user_usage_limit=None)
    assert _redeem(db_session, coupon, user) is not None
    assert _redeem(db_session, coupon, admin_user) is None
    db_session.refresh(coupon)
    assert coupon.usage_count == 1
    assert db_session.query(CouponUsage).filter_by(coupon_id=coupon.id).count() == 1


def test_strict_redeem_stops_at_per_user_limit(db_session, user, coupon):
    assert _redeem(db_session, coupon, user) is not None
    assert _redeem(db_session, coupon, user) is None
    db_session.refresh(coupon)
    assert coupon.usage_count == 1


def test_best_effort_redeem_can_exceed_limit(db_session, user, admin_user, coupon_factory):
    coupon = coupon_factory(usage_limit=1, user_usage_limit=None)
    _redeem(db_session, coupon, user, strict=False)
    _redeem(db_session, coupon, admin_user, strict=False)
    db_session.refresh(coupon)
    assert coupon.usage_count == 2


def test_list_usages(db_session, user, coupon):
    _redeem(db_session, coupon, user)
    items, total = coupons.list_usages(db_session, str(coupon.id), 10, 0)
    assert total == 1
    assert items[0].user_id == user.id


def test_coupon_model_defaults(db_session):
    coupon = Coupon(code="DEFAULTS", name="Defaults", discount_type="fixed", discount_value=5)
    db_session.add(coupon)
    db_session.commit()
    db_session.refresh(coupon)
    assert coupon.usage_count == 0
    assert coupon.user_usage_limit == 1
    assert coupon.is_active is True
