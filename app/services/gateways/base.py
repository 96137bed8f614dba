"""Payment gateway contract shared by every provider adapter.

Amounts crossing this boundary are ``Decimal`` major units (e.g. 49.90).
Adapters whose upstream API expects minor units convert with
:func:`to_minor_units` / :func:`from_minor_units` (factor 100) and nowhere else.
"""
import enum
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from app.models.billing import PaymentProviderType
from app.services.common import quantize_money

logger = logging.getLogger(__name__)

MINOR_UNIT_FACTOR = Decimal(100)


class PaymentGatewayError(Exception):
    """Base class for errors raised across the gateway boundary."""


class WebhookVerificationError(PaymentGatewayError):
    """The webhook payload could not be authenticated or parsed."""


class UnsupportedProviderError(PaymentGatewayError):
    def __init__(self, provider_type: str) -> None:
        self.provider_type = provider_type
        super().__init__(f"Unsupported payment provider: {provider_type}")


class PaymentEventStatus(str, enum.Enum):
    success = "success"
    pending = "pending"
    failed = "failed"


@dataclass
class PaymentRequest:
    amount: Decimal
    currency: str
    description: str
    user_id: str
    user_email: str
    plugin_id: str
    plan_type: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentResult:
    success: bool
    payment_id: str | None = None
    checkout_url: str | None = None
    client_secret: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentEvent:
    provider: str
    event: str
    payment_id: str
    status: PaymentEventStatus
    user_id: str | None = None
    plugin_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def to_minor_units(amount: Decimal) -> int:
    return int(
        (Decimal(amount) * MINOR_UNIT_FACTOR).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    )


def from_minor_units(value: Any) -> Decimal:
    return quantize_money(Decimal(value) / MINOR_UNIT_FACTOR)


def parse_amount(value: Any) -> Decimal | None:
    """Parse a major-unit amount from a provider payload, or None."""
    if value is None or value == "":
        return None
    try:
        return quantize_money(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


def header_value(headers: Mapping[str, str] | None, name: str) -> str | None:
    if not headers:
        return None
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class PaymentGateway(ABC):
    provider_type: PaymentProviderType
    signature_header: str | None = None

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        self.config = dict(config or {})

    def _config_value(self, *keys: str) -> str | None:
        for key in keys:
            value = self.config.get(key)
            if value:
                return str(value)
        return None

    @staticmethod
    def _load_json(payload: bytes) -> dict[str, Any]:
        try:
            data = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as exc:
            raise WebhookVerificationError("Invalid JSON payload") from exc
        if not isinstance(data, dict):
            raise WebhookVerificationError("Webhook payload must be a JSON object")
        return data

    @abstractmethod
    async def create_payment(self, request: PaymentRequest) -> PaymentResult:
        """Start a payment upstream. Never raises for upstream failures."""

    @abstractmethod
    async def verify_webhook(
        self,
        payload: bytes,
        signature: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> PaymentEvent:
        """Authenticate and normalize a webhook delivery.

        Raises WebhookVerificationError when the delivery cannot be trusted.
        """

    async def cancel_subscription(self, subscription_id: str) -> bool:
        return False

    async def get_payment_status(self, payment_id: str) -> str:
        return "unknown"
