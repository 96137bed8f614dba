from app.services.gateways.base import (
    PaymentEvent,
    PaymentEventStatus,
    PaymentGateway,
    PaymentGatewayError,
    PaymentRequest,
    PaymentResult,
    UnsupportedProviderError,
    WebhookVerificationError,
    from_minor_units,
    to_minor_units,
)
from app.services.gateways.checkout_platforms import (
    HotmartGateway,
    MonetizzeGateway,
    YampiGateway,
)
from app.services.gateways.mercadopago_gateway import MercadoPagoGateway
from app.services.gateways.registry import GATEWAYS, get_gateway
from app.services.gateways.stripe_gateway import StripeGateway

__all__ = [
    "GATEWAYS",
    "HotmartGateway",
    "MercadoPagoGateway",
    "MonetizzeGateway",
    "PaymentEvent",
    "PaymentEventStatus",
    "PaymentGateway",
    "PaymentGatewayError",
    "PaymentRequest",
    "PaymentResult",
    "StripeGateway",
    "UnsupportedProviderError",
    "WebhookVerificationError",
    "YampiGateway",
    "from_minor_units",
    "get_gateway",
    "to_minor_units",
]
