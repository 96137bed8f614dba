"""Tests for shared service helpers: UUIDs, money, ordering and pagination."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.billing import Coupon, SubscriptionStatus
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    quantize_money,
    validate_enum,
)
from app.services.response import list_response


@pytest.fixture
def seeded(db_session: Session, coupon_factory) -> Session:
    for i in range(12):
        coupon_factory(code=f"ITEM{i:03d}")
    return db_session


class TestCoerceUuid:
    def test_none_returns_none(self) -> None:
        assert coerce_uuid(None) is None

    def test_uuid_passthrough(self) -> None:
        u = uuid.uuid4()
        assert coerce_uuid(u) is u

    def test_string_to_uuid(self) -> None:
        s = "12345678-1234-5678-1234-567812345678"
        result = coerce_uuid(s)
        assert isinstance(result, uuid.UUID)
        assert str(result) == s

    def test_invalid_string_raises(self) -> None:
        with pytest.raises(ValueError):
            coerce_uuid("not-a-uuid")


class TestQuantizeMoney:
    def test_rounds_half_up(self) -> None:
        assert quantize_money(Decimal("4.485")) == Decimal("4.49")
        assert quantize_money(Decimal("4.484")) == Decimal("4.48")

    def test_accepts_floats_and_strings(self) -> None:
        assert quantize_money(49.9) == Decimal("49.90")
        assert quantize_money("10") == Decimal("10.00")


class TestValidateEnum:
    def test_none_passthrough(self) -> None:
        assert validate_enum(None, SubscriptionStatus, "status") is None

    def test_valid_value(self) -> None:
        assert validate_enum("active", SubscriptionStatus, "status") == SubscriptionStatus.active

    def test_invalid_value(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            validate_enum("paused", SubscriptionStatus, "status")
        assert exc_info.value.status_code == 400
        assert "Allowed: active" in exc_info.value.detail


class TestApplyOrdering:
    def test_valid_asc(self, seeded: Session) -> None:
        ordered = apply_ordering(select(Coupon), "code", "asc", {"code": Coupon.code})
        items = list(seeded.scalars(ordered).all())
        assert items[0].code == "ITEM000"

    def test_valid_desc(self, seeded: Session) -> None:
        ordered = apply_ordering(select(Coupon), "code", "desc", {"code": Coupon.code})
        items = list(seeded.scalars(ordered).all())
        assert items[0].code == "ITEM011"

    def test_invalid_column_raises(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            apply_ordering(select(Coupon), "invalid", "asc", {"code": Coupon.code})
        assert exc_info.value.status_code == 400


class TestApplyPagination:
    def test_limit_offset(self, seeded: Session) -> None:
        query = select(Coupon).order_by(Coupon.code)
        items = list(seeded.scalars(apply_pagination(query, limit=5, offset=10)).all())
        assert [item.code for item in items] == ["ITEM010", "ITEM011"]


class TestListResponse:
    def test_envelope(self) -> None:
        assert list_response([1, 2], 10, 0, total=7) == {
            "items": [1, 2],
            "count": 2,
            "limit": 10,
            "offset": 0,
            "total": 7,
        }
