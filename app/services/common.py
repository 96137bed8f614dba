"""Shared service utilities: UUID coercion, money rounding, ordering, pagination."""
from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, TypeVar

from fastapi import HTTPException
from sqlalchemy import Select

E = TypeVar("E", bound=enum.Enum)

CENTS = Decimal("0.01")


def coerce_uuid(value: Any) -> uuid.UUID | None:
    """Convert a string or UUID to UUID, or return None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def require_uuid(value: Any) -> uuid.UUID:
    """Convert a string or UUID to UUID, raising ValueError if None."""
    result = coerce_uuid(value)
    if result is None:
        raise ValueError("UUID value is required but got None")
    return result


def as_utc(value: datetime | None) -> datetime | None:
    """Ensure datetime is timezone-aware (UTC). SQLite doesn't preserve tz info."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def quantize_money(value: Any) -> Decimal:
    """Round a money amount to cents, half-up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def validate_enum(value: str | None, enum_cls: type[E], label: str) -> E | None:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_cls)
        raise HTTPException(
            status_code=400, detail=f"Invalid {label}. Allowed: {allowed}"
        ) from exc


def apply_ordering(
    query: Select[Any],
    order_by: str,
    order_dir: str,
    allowed_columns: dict[str, Any],
) -> Select[Any]:
    """Apply ordering to a select statement with validation."""
    if order_by not in allowed_columns:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid order_by. Allowed: {', '.join(sorted(allowed_columns))}",
        )
    column = allowed_columns[order_by]
    if order_dir == "desc":
        return query.order_by(column.desc())
    return query.order_by(column.asc())


def apply_pagination(query: Select[Any], limit: int, offset: int) -> Select[Any]:
    """Apply limit/offset to a select statement."""
    return query.limit(limit).offset(offset)
