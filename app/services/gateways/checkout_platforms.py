"""Adapters for hosted-checkout platforms (Hotmart, Monetizze, Yampi).

These platforms sell through their own product pages, so ``create_payment``
reports failure with the template checkout URL instead of pretending a
payment was created. Webhooks are authenticated with each platform's
shared-secret scheme.
"""
import base64
import hashlib
import hmac
import logging
from collections.abc import Mapping
from typing import Any

from app.models.billing import PaymentProviderType
from app.services.gateways.base import (
    PaymentEvent,
    PaymentEventStatus,
    PaymentGateway,
    PaymentRequest,
    PaymentResult,
    WebhookVerificationError,
    header_value,
    parse_amount,
)

logger = logging.getLogger(__name__)


def _metadata_ids(metadata: Mapping[str, Any]) -> tuple[str | None, str | None]:
    user_id = metadata.get("user_id") or metadata.get("userId")
    plugin_id = metadata.get("plugin_id") or metadata.get("pluginId")
    return (
        str(user_id) if user_id else None,
        str(plugin_id) if plugin_id else None,
    )


def _require_secret(value: str | None, provider: str) -> str:
    if not value:
        raise WebhookVerificationError(f"{provider} webhook secret is not configured")
    return value


class HotmartGateway(PaymentGateway):
    provider_type = PaymentProviderType.hotmart
    signature_header = "x-hotmart-hottok"

    async def create_payment(self, request: PaymentRequest) -> PaymentResult:
        product = self._config_value("product_code", "productCode") or request.plugin_id
        return PaymentResult(
            success=False,
            error=(
                "Hotmart integration needs configuration. Configure your product "
                "code in the admin panel. Docs: https://developers.hotmart.com"
            ),
            checkout_url=f"https://pay.hotmart.com/{product}",
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> PaymentEvent:
        expected = _require_secret(self._config_value("hottok", "webhook_secret"), "Hotmart")
        body = self._load_json(payload)
        token = signature or header_value(headers, self.signature_header) or body.get("hottok")
        if not token or not hmac.compare_digest(str(token), expected):
            raise WebhookVerificationError("Invalid Hotmart hottok")

        data = body.get("data") or {}
        purchase = data.get("purchase") or {}
        transaction = purchase.get("transaction")
        if not transaction:
            raise WebhookVerificationError("Hotmart event has no transaction")
        hotmart_status = str(purchase.get("status") or "").lower()
        if hotmart_status in {"approved", "complete", "completed"}:
            status = PaymentEventStatus.success
        elif hotmart_status in {"cancelled", "canceled", "refunded"}:
            status = PaymentEventStatus.failed
        else:
            status = PaymentEventStatus.pending
        metadata = dict(data.get("metadata") or {})
        user_id, plugin_id = _metadata_ids(metadata)
        price = purchase.get("price") or {}
        return PaymentEvent(
            provider=self.provider_type.value,
            event=str(body.get("event") or "unknown"),
            payment_id=str(transaction),
            status=status,
            user_id=user_id,
            plugin_id=plugin_id,
            amount=parse_amount(price.get("value")),
            currency=price.get("currency_value"),
            metadata=metadata,
        )


class MonetizzeGateway(PaymentGateway):
    provider_type = PaymentProviderType.monetizze
    signature_header = None

    async def create_payment(self, request: PaymentRequest) -> PaymentResult:
        return PaymentResult(
            success=False,
            error=(
                "Monetizze integration needs configuration. Configure your product "
                "ids in the admin panel. Docs: https://docs.monetizze.com.br"
            ),
            checkout_url=f"https://checkout.monetizze.com.br/checkout/{request.plugin_id}",
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> PaymentEvent:
        expected = _require_secret(
            self._config_value("consumer_key", "consumerKey"), "Monetizze"
        )
        body = self._load_json(payload)
        token = signature or body.get("chave_unica")
        if not token or not hmac.compare_digest(str(token), expected):
            raise WebhookVerificationError("Invalid Monetizze chave_unica")

        sale = body.get("venda") or {}
        sale_id = sale.get("codigo") or sale.get("id")
        if not sale_id:
            raise WebhookVerificationError("Monetizze event has no sale id")
        sale_status = str(sale.get("status") or "")
        if sale_status in {"2", "Completo", "Finalizada"}:
            status = PaymentEventStatus.success
        elif sale_status in {"3", "4", "Cancelado", "Cancelada", "Devolvida"}:
            status = PaymentEventStatus.failed
        else:
            status = PaymentEventStatus.pending
        metadata = dict(body.get("metadata") or {})
        user_id, plugin_id = _metadata_ids(metadata)
        return PaymentEvent(
            provider=self.provider_type.value,
            event=str(body.get("tipoEvento") or body.get("tipo_evento") or "unknown"),
            payment_id=str(sale_id),
            status=status,
            user_id=user_id,
            plugin_id=plugin_id,
            amount=parse_amount(sale.get("valor")),
            metadata=metadata,
        )


class YampiGateway(PaymentGateway):
    provider_type = PaymentProviderType.yampi
    signature_header = "x-yampi-hmac-sha256"

    async def create_payment(self, request: PaymentRequest) -> PaymentResult:
        alias = self._config_value("alias") or "store"
        return PaymentResult(
            success=False,
            error=(
                "Yampi integration needs configuration. Configure your alias and "
                "SKU codes in the admin panel. Docs: https://api.yampi.com.br/docs"
            ),
            checkout_url=f"https://{alias}.yampi.io/checkout?sku={request.plugin_id}",
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> PaymentEvent:
        secret = _require_secret(
            self._config_value("webhook_secret", "webhookSecret"), "Yampi"
        )
        received = signature or header_value(headers, self.signature_header)
        expected = base64.b64encode(
            hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
        ).decode("ascii")
        if not received or not hmac.compare_digest(received, expected):
            raise WebhookVerificationError("Invalid Yampi signature")

        body = self._load_json(payload)
        resource = body.get("resource") or body.get("data") or {}
        order_id = resource.get("id")
        if not order_id:
            raise WebhookVerificationError("Yampi event has no order id")
        yampi_status = str(
            resource.get("status_alias") or resource.get("status") or ""
        ).lower()
        if yampi_status in {"paid", "approved"}:
            status = PaymentEventStatus.success
        elif yampi_status in {"cancelled", "canceled", "refunded", "refused"}:
            status = PaymentEventStatus.failed
        else:
            status = PaymentEventStatus.pending
        metadata = dict(resource.get("metadata") or {})
        user_id, plugin_id = _metadata_ids(metadata)
        return PaymentEvent(
            provider=self.provider_type.value,
            event=str(body.get("event") or body.get("type") or "unknown"),
            payment_id=str(order_id),
            status=status,
            user_id=user_id,
            plugin_id=plugin_id,
            amount=parse_amount(resource.get("value_total")),
            metadata=metadata,
        )
