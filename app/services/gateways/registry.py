import logging

from app.models.billing import PaymentProvider, PaymentProviderType
from app.services.gateways.base import PaymentGateway, UnsupportedProviderError
from app.services.gateways.checkout_platforms import (
    HotmartGateway,
    MonetizzeGateway,
    YampiGateway,
)
from app.services.gateways.mercadopago_gateway import MercadoPagoGateway
from app.services.gateways.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

GATEWAYS: dict[PaymentProviderType, type[PaymentGateway]] = {
    PaymentProviderType.stripe: StripeGateway,
    PaymentProviderType.mercadopago: MercadoPagoGateway,
    PaymentProviderType.hotmart: HotmartGateway,
    PaymentProviderType.monetizze: MonetizzeGateway,
    PaymentProviderType.yampi: YampiGateway,
}


def get_gateway(provider: PaymentProvider) -> PaymentGateway:
    """Build the adapter for a configured provider record."""
    try:
        provider_type = PaymentProviderType(provider.type)
    except ValueError as exc:
        raise UnsupportedProviderError(str(provider.type)) from exc
    gateway_cls = GATEWAYS.get(provider_type)
    if gateway_cls is None:
        logger.warning("No adapter registered for provider type %s", provider_type.value)
        raise UnsupportedProviderError(provider_type.value)
    return gateway_cls(provider.config or {})
