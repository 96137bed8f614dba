from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class SubscribeRequest(BaseModel):
    plugin_id: UUID
    plan_type: Literal["monthly", "yearly", "lifetime"]
    coupon_code: str | None = Field(default=None, max_length=80)


class PricingRead(BaseModel):
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    currency: str
    coupon_applied: bool


class SubscribeResponse(BaseModel):
    success: bool
    payment_url: str | None = None
    client_secret: str | None = None
    payment_id: str | None = None
    provider: str
    provider_name: str
    pricing: PricingRead


class WebhookAck(BaseModel):
    received: bool = True
