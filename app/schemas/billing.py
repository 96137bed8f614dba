from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

DiscountTypeLiteral = Literal["percentage", "fixed"]
ProviderTypeLiteral = Literal[
    "stripe", "mercadopago", "hotmart", "monetizze", "yampi", "custom"
]

_SECRET_MARKERS = ("secret", "token", "key", "hottok", "password")


def normalize_coupon_code(value: str) -> str:
    return value.strip().upper()


# ── Coupon ───────────────────────────────────────────────


class CouponBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    code: str = Field(min_length=1, max_length=80)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    discount_type: DiscountTypeLiteral
    discount_value: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    minimum_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    maximum_discount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    usage_limit: int | None = Field(default=None, ge=1)
    user_usage_limit: int | None = Field(default=1, ge=1)
    is_active: bool = True
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    applicable_plugins: list[UUID] | None = None

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        value = normalize_coupon_code(value)
        if not value:
            raise ValueError("Coupon code cannot be blank")
        return value


class CouponCreate(CouponBase):
    @model_validator(mode="after")
    def _check_rules(self) -> "CouponCreate":
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.starts_at and self.expires_at and self.expires_at < self.starts_at:
            raise ValueError("expires_at must be after starts_at")
        return self


class CouponUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    code: str | None = Field(default=None, min_length=1, max_length=80)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    discount_type: DiscountTypeLiteral | None = None
    discount_value: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    minimum_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    maximum_discount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    usage_limit: int | None = Field(default=None, ge=1)
    user_usage_limit: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    applicable_plugins: list[UUID] | None = None

    # Omitted means unchanged; an explicit null is not a value for these columns.
    @field_validator("name", "discount_type", "discount_value", "is_active")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("Field cannot be null")
        value = normalize_coupon_code(value)
        if not value:
            raise ValueError("Coupon code cannot be blank")
        return value


class CouponRead(CouponBase):
    model_config = ConfigDict(
        from_attributes=True, populate_by_name=True, use_enum_values=True
    )
    id: UUID
    discount_type: str  # type: ignore[assignment]
    usage_count: int
    created_at: datetime
    updated_at: datetime


class CouponSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    code: str
    name: str
    discount_type: str
    discount_value: Decimal


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=80)
    amount: Decimal = Field(ge=0, decimal_places=2)
    plugin_id: UUID | None = None


class CouponValidateResponse(BaseModel):
    valid: bool
    code: str | None = None
    reason: str | None = None
    discount_amount: Decimal | None = None
    final_amount: Decimal | None = None
    coupon: CouponSummary | None = None


class CouponUsageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    coupon_id: UUID
    user_id: UUID
    subscription_id: UUID | None = None
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    used_at: datetime


# ── Payment provider ─────────────────────────────────────


class PaymentProviderBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    name: str = Field(min_length=1, max_length=120)
    type: ProviderTypeLiteral
    display_name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    is_active: bool = False
    is_default: bool = False
    config: dict[str, Any] = Field(default_factory=dict)
    webhook_url: str | None = Field(default=None, max_length=512)


class PaymentProviderCreate(PaymentProviderBase):
    pass


class PaymentProviderUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    name: str | None = Field(default=None, max_length=120)
    type: ProviderTypeLiteral | None = None
    display_name: str | None = Field(default=None, max_length=120)
    description: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    config: dict[str, Any] | None = None
    webhook_url: str | None = Field(default=None, max_length=512)


class PaymentProviderRead(PaymentProviderBase):
    model_config = ConfigDict(
        from_attributes=True, populate_by_name=True, use_enum_values=True
    )
    id: UUID
    type: str  # type: ignore[assignment]
    created_at: datetime
    updated_at: datetime

    @field_serializer("config")
    def _mask_secrets(self, config: dict[str, Any]) -> dict[str, Any]:
        masked: dict[str, Any] = {}
        for key, value in (config or {}).items():
            if value and any(marker in key.lower() for marker in _SECRET_MARKERS):
                masked[key] = "********"
            else:
                masked[key] = value
        return masked


# ── Subscription / License ───────────────────────────────


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    user_id: UUID
    plugin_id: UUID
    provider_id: UUID | None = None
    plan_type: str
    status: str
    price: Decimal
    external_id: str | None = None
    start_date: datetime
    end_date: datetime | None = None
    auto_renew: bool
    cancelled_at: datetime | None = None
    created_at: datetime


class LicenseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
    id: UUID
    user_id: UUID
    plugin_id: UUID
    subscription_id: UUID | None = None
    license_key: str
    max_domains: int
    activated_domains: list[str]
    status: str
    activated_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime


class LicenseValidateRequest(BaseModel):
    license_key: str = Field(min_length=1, max_length=64)
    domain: str | None = Field(default=None, max_length=255)


class LicenseActivateRequest(BaseModel):
    license_key: str = Field(min_length=1, max_length=64)
    domain: str = Field(min_length=1, max_length=255)


class LicenseValidateResponse(BaseModel):
    valid: bool
    reason: str | None = None
    license: LicenseRead | None = None
