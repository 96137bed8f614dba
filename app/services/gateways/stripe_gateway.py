"""Stripe adapter: PaymentIntents for checkout, signed events for webhooks."""
import logging
from collections.abc import Mapping
from typing import Any

import stripe

from app.config import settings
from app.models.billing import PaymentProviderType
from app.services.gateways.base import (
    PaymentEvent,
    PaymentEventStatus,
    PaymentGateway,
    PaymentRequest,
    PaymentResult,
    WebhookVerificationError,
    from_minor_units,
    header_value,
    to_minor_units,
)

logger = logging.getLogger(__name__)

_FAILED_EVENTS = {"payment_intent.payment_failed", "payment_intent.canceled"}


class StripeGateway(PaymentGateway):
    provider_type = PaymentProviderType.stripe
    signature_header = "stripe-signature"

    @property
    def secret_key(self) -> str | None:
        return self._config_value("secret_key", "secretKey", "api_key")

    @property
    def webhook_secret(self) -> str | None:
        return (
            self._config_value("webhook_secret", "webhookSecret")
            or settings.stripe_webhook_secret
            or None
        )

    def _client(self) -> stripe.StripeClient:
        return stripe.StripeClient(
            self.secret_key, http_client=stripe.HTTPXClient()
        )

    async def create_payment(self, request: PaymentRequest) -> PaymentResult:
        if not self.secret_key:
            return PaymentResult(success=False, error="Stripe secret key is not configured")
        metadata = {
            "user_id": request.user_id,
            "plugin_id": request.plugin_id,
            "plan_type": request.plan_type,
            **{key: str(value) for key, value in request.metadata.items() if value is not None},
        }
        params: dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "description": request.description,
            "receipt_email": request.user_email,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        try:
            intent = await self._client().payment_intents.create_async(params=params)
        except stripe.StripeError as exc:
            logger.error("Stripe create_payment failed: %s", exc.user_message or exc)
            return PaymentResult(success=False, error=str(exc.user_message or exc))
        logger.info("Created Stripe PaymentIntent", extra={"payment_id": intent.id})
        return PaymentResult(
            success=True, payment_id=intent.id, client_secret=intent.client_secret
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> PaymentEvent:
        signature = signature or header_value(headers, self.signature_header)
        if not signature:
            raise WebhookVerificationError("Missing Stripe signature")
        secret = self.webhook_secret
        if not secret:
            raise WebhookVerificationError("Stripe webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError("Invalid Stripe signature") from exc
        except ValueError as exc:
            raise WebhookVerificationError("Invalid Stripe payload") from exc

        # The signature covers the raw bytes, so the plain JSON is trusted from here.
        body = self._load_json(payload)
        event_type = str(body.get("type", ""))
        intent = (body.get("data") or {}).get("object") or {}
        payment_id = intent.get("id")
        if not payment_id:
            raise WebhookVerificationError("Stripe event has no payment object id")

        if event_type == "payment_intent.succeeded":
            status = PaymentEventStatus.success
        elif event_type in _FAILED_EVENTS:
            status = PaymentEventStatus.failed
        else:
            status = PaymentEventStatus.pending

        # Captured amount first; the authorized amount is only a fallback.
        raw_amount = intent.get("amount_received") or intent.get("amount")
        metadata = dict(intent.get("metadata") or {})
        return PaymentEvent(
            provider=self.provider_type.value,
            event=event_type,
            payment_id=str(payment_id),
            status=status,
            user_id=metadata.get("user_id") or metadata.get("userId"),
            plugin_id=metadata.get("plugin_id") or metadata.get("pluginId"),
            amount=from_minor_units(raw_amount) if raw_amount else None,
            currency=(intent.get("currency") or "").upper() or None,
            metadata=metadata,
        )

    async def cancel_subscription(self, subscription_id: str) -> bool:
        if not self.secret_key:
            return False
        try:
            result = await self._client().subscriptions.cancel_async(subscription_id)
        except stripe.StripeError as exc:
            logger.error("Stripe cancel_subscription failed: %s", exc)
            return False
        return result.status == "canceled"

    async def get_payment_status(self, payment_id: str) -> str:
        if not self.secret_key:
            return "unknown"
        try:
            intent = await self._client().payment_intents.retrieve_async(payment_id)
        except stripe.StripeError as exc:
            logger.error("Stripe get_payment_status failed: %s", exc)
            return "unknown"
        return intent.status
