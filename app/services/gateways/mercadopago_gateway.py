"""Mercado Pago adapter (Pix payments over the REST API)."""
import hashlib
import hmac
import logging
import uuid
from collections.abc import Mapping
from typing import Any

import httpx

from app.config import settings
from app.models.billing import PaymentProviderType
from app.services.gateways.base import (
    PaymentEvent,
    PaymentEventStatus,
    PaymentGateway,
    PaymentGatewayError,
    PaymentRequest,
    PaymentResult,
    WebhookVerificationError,
    header_value,
    parse_amount,
)

logger = logging.getLogger(__name__)

_FAILED_STATUSES = {"rejected", "cancelled", "refunded", "charged_back"}


def _parse_x_signature(x_signature: str) -> tuple[str | None, str | None]:
    """Split ``ts=1700000000,v1=abcdef`` into (ts, v1)."""
    ts = None
    v1 = None
    for part in x_signature.split(","):
        key, _, value = part.strip().partition("=")
        if key == "ts":
            ts = value
        elif key == "v1":
            v1 = value
    return ts, v1


def verify_signature(
    *, secret: str, x_signature: str, x_request_id: str, data_id: str
) -> bool:
    ts, v1 = _parse_x_signature(x_signature)
    if not ts or not v1:
        return False
    manifest = f"id:{data_id};request-id:{x_request_id};ts:{ts};"
    digest = hmac.new(
        secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(digest, v1)


class MercadoPagoGateway(PaymentGateway):
    provider_type = PaymentProviderType.mercadopago
    signature_header = "x-signature"

    @property
    def access_token(self) -> str | None:
        return self._config_value("access_token", "accessToken")

    @property
    def webhook_secret(self) -> str | None:
        return self._config_value("webhook_secret", "webhookSecret")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config_value("base_url") or settings.mercadopago_base_url,
            timeout=settings.payment_http_timeout,
        )

    async def _fetch_payment(self, payment_id: str) -> dict[str, Any]:
        async with self._client() as client:
            resp = await client.get(f"/v1/payments/{payment_id}", headers=self._headers())
        if resp.status_code >= 400:
            raise PaymentGatewayError(
                f"Mercado Pago payment lookup failed ({resp.status_code})"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentGatewayError(
                "Mercado Pago payment lookup returned an unreadable body"
            ) from exc
        if not isinstance(data, dict):
            raise PaymentGatewayError(
                "Mercado Pago payment lookup returned an unreadable body"
            )
        return data

    async def create_payment(self, request: PaymentRequest) -> PaymentResult:
        if not self.access_token:
            return PaymentResult(
                success=False, error="Mercado Pago access token is not configured"
            )
        payload: dict[str, Any] = {
            "transaction_amount": float(request.amount),
            "description": request.description,
            "payment_method_id": "pix",
            "payer": {"email": request.user_email},
            "metadata": {
                "user_id": request.user_id,
                "plugin_id": request.plugin_id,
                "plan_type": request.plan_type,
                **request.metadata,
            },
        }
        notification_url = self._config_value("notification_url", "webhook_url")
        if notification_url:
            payload["notification_url"] = notification_url
        headers = {**self._headers(), "X-Idempotency-Key": str(uuid.uuid4())}
        try:
            async with self._client() as client:
                resp = await client.post("/v1/payments", json=payload, headers=headers)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Mercado Pago create_payment failed: %s", exc)
            return PaymentResult(success=False, error="Mercado Pago request failed")
        if resp.status_code >= 400:
            message = data.get("message") or "Mercado Pago rejected the payment"
            logger.error("Mercado Pago create_payment failed: %s", message)
            return PaymentResult(success=False, error=message)

        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        logger.info("Created Mercado Pago payment", extra={"payment_id": str(data.get("id"))})
        return PaymentResult(
            success=True,
            payment_id=str(data.get("id")),
            checkout_url=transaction.get("ticket_url"),
            metadata={
                "qr_code": transaction.get("qr_code"),
                "qr_code_base64": transaction.get("qr_code_base64"),
            },
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> PaymentEvent:
        body = self._load_json(payload)
        data_id = (body.get("data") or {}).get("id")
        if not data_id:
            raise WebhookVerificationError("Mercado Pago notification has no data.id")
        data_id = str(data_id)

        secret = self.webhook_secret
        if not secret:
            raise WebhookVerificationError("Mercado Pago webhook secret is not configured")
        x_signature = signature or header_value(headers, self.signature_header)
        x_request_id = header_value(headers, "x-request-id") or ""
        if not x_signature or not verify_signature(
            secret=secret,
            x_signature=x_signature,
            x_request_id=x_request_id,
            data_id=data_id,
        ):
            raise WebhookVerificationError("Invalid Mercado Pago signature")

        event_type = str(body.get("type") or body.get("action") or "unknown")
        if body.get("type") and body.get("type") != "payment":
            return PaymentEvent(
                provider=self.provider_type.value,
                event=event_type,
                payment_id=data_id,
                status=PaymentEventStatus.pending,
            )

        # The notification only carries an id; status and amount come from the API.
        try:
            payment = await self._fetch_payment(data_id)
        except httpx.HTTPError as exc:
            raise PaymentGatewayError("Mercado Pago payment lookup failed") from exc

        mp_status = str(payment.get("status") or "")
        if mp_status == "approved":
            status = PaymentEventStatus.success
        elif mp_status in _FAILED_STATUSES:
            status = PaymentEventStatus.failed
        else:
            status = PaymentEventStatus.pending
        metadata = dict(payment.get("metadata") or {})
        return PaymentEvent(
            provider=self.provider_type.value,
            event=event_type,
            payment_id=data_id,
            status=status,
            user_id=metadata.get("user_id"),
            plugin_id=metadata.get("plugin_id"),
            amount=parse_amount(payment.get("transaction_amount")),
            currency=payment.get("currency_id"),
            metadata=metadata,
        )

    async def get_payment_status(self, payment_id: str) -> str:
        if not self.access_token:
            return "unknown"
        try:
            payment = await self._fetch_payment(payment_id)
        except (httpx.HTTPError, PaymentGatewayError) as exc:
            logger.error("Mercado Pago get_payment_status failed: %s", exc)
            return "unknown"
        return str(payment.get("status") or "unknown")
