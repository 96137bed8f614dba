"""Turns verified payment events into entitlements, exactly once.

Flow per delivery: verify -> duplicate check -> entitle -> coupon bookkeeping.
The idempotency marker, the Subscription and the License are written in one
transaction; the marker's primary key is what stops a concurrent redelivery
from entitling twice. Coupon usage is recorded afterwards in its own
transaction and never undoes an entitlement.
"""
import enum
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.metrics import WEBHOOK_EVENTS
from app.models.billing import (
    License,
    LicenseStatus,
    PaymentProvider,
    PaymentProviderType,
    PlanType,
    ProcessedWebhookEvent,
    Subscription,
    SubscriptionStatus,
)
from app.models.plugin import Plugin
from app.models.user import User
from app.services.checkout import plan_price
from app.services.coupons import coupons
from app.services.gateways import PaymentEvent, PaymentEventStatus, get_gateway
from app.services.gateways.base import parse_amount
from app.services.licenses import generate_license_key
from app.services.payment_providers import payment_providers
from app.services.subscriptions import plan_end_date

logger = logging.getLogger(__name__)

_MARKER_TABLE = ProcessedWebhookEvent.__tablename__


class WebhookOutcome(str, enum.Enum):
    entitled = "entitled"
    duplicate = "duplicate"
    ignored = "ignored"
    unresolved = "unresolved"


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    event: PaymentEvent
    subscription: Subscription | None = None
    license: License | None = None


def _is_marker_collision(error: IntegrityError) -> bool:
    """Return True when IntegrityError is a duplicate idempotency marker."""
    original = getattr(error, "orig", None)
    diag = getattr(original, "diag", None)
    if getattr(diag, "constraint_name", None) == f"{_MARKER_TABLE}_pkey":
        return True
    message = str(original or error).lower()
    return f"{_MARKER_TABLE}_pkey" in message or f"{_MARKER_TABLE}.id" in message


def _meta(metadata: Mapping, *keys: str):
    for key in keys:
        value = metadata.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_uuid(value) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class WebhookService:
    def __init__(self, db: Session) -> None:
        self.db = db

    # ── Provider resolution ──────────────────────────────

    def resolve_provider(self, provider_id: str) -> PaymentProvider:
        return payment_providers.get(self.db, provider_id)

    def resolve_stripe_provider(self) -> PaymentProvider:
        provider = payment_providers.get_by_type(self.db, PaymentProviderType.stripe)
        if provider is None:
            raise HTTPException(status_code=404, detail="Stripe provider not configured")
        return provider

    # ── Processing ───────────────────────────────────────

    def is_processed(self, payment_id: str) -> bool:
        return (
            self.db.scalar(
                select(ProcessedWebhookEvent.id).where(
                    ProcessedWebhookEvent.id == payment_id
                )
            )
            is not None
        )

    async def process(
        self,
        provider: PaymentProvider,
        payload: bytes,
        signature: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookResult:
        gateway = get_gateway(provider)
        event = await gateway.verify_webhook(payload, signature=signature, headers=headers)
        log_extra = {"provider": event.provider, "payment_id": event.payment_id}
        logger.info("Webhook verified: %s (%s)", event.event, event.status.value, extra=log_extra)

        result = self._handle(provider, event)
        WEBHOOK_EVENTS.labels(event.provider, result.outcome.value).inc()
        logger.info("Webhook outcome: %s", result.outcome.value, extra=log_extra)
        return result

    def _handle(self, provider: PaymentProvider, event: PaymentEvent) -> WebhookResult:
        if self.is_processed(event.payment_id):
            return WebhookResult(WebhookOutcome.duplicate, event)
        if event.status != PaymentEventStatus.success:
            return WebhookResult(WebhookOutcome.ignored, event)

        user_uuid = _parse_uuid(event.user_id)
        plugin_uuid = _parse_uuid(event.plugin_id)
        user = self.db.get(User, user_uuid) if user_uuid else None
        plugin = self.db.get(Plugin, plugin_uuid) if plugin_uuid else None
        if user is None or plugin is None:
            logger.warning(
                "Successful payment without a resolvable user/plugin",
                extra={"provider": event.provider, "payment_id": event.payment_id},
            )
            return WebhookResult(WebhookOutcome.unresolved, event)

        plan_type = self._plan_type(event)
        amount = self._charged_amount(event, plugin, plan_type)
        try:
            subscription, license = self._entitle(
                provider, event, user, plugin, plan_type, amount
            )
        except IntegrityError as exc:
            self.db.rollback()
            if not _is_marker_collision(exc):
                raise
            logger.info(
                "Concurrent delivery already entitled this payment",
                extra={"provider": event.provider, "payment_id": event.payment_id},
            )
            return WebhookResult(WebhookOutcome.duplicate, event)
        except Exception:
            self.db.rollback()
            raise

        self._record_coupon_usage(event, user.id, subscription.id, amount)
        return WebhookResult(
            WebhookOutcome.entitled, event, subscription=subscription, license=license
        )

    def _plan_type(self, event: PaymentEvent) -> PlanType:
        raw = _meta(event.metadata, "plan_type", "planType")
        try:
            return PlanType(raw) if raw else PlanType.monthly
        except ValueError:
            logger.warning("Unknown plan type %r, using monthly", raw)
            return PlanType.monthly

    def _charged_amount(
        self, event: PaymentEvent, plugin: Plugin, plan_type: PlanType
    ) -> Decimal:
        if event.amount is not None:
            return event.amount
        extra = {"provider": event.provider, "payment_id": event.payment_id}
        amount = parse_amount(_meta(event.metadata, "final_amount", "finalAmount"))
        if amount is not None:
            logger.warning("Provider payload has no amount, using checkout metadata", extra=extra)
            return amount
        logger.warning("Provider payload has no amount, using catalog price", extra=extra)
        return plan_price(plugin, plan_type) or Decimal("0.00")

    def _entitle(
        self,
        provider: PaymentProvider,
        event: PaymentEvent,
        user: User,
        plugin: Plugin,
        plan_type: PlanType,
        amount: Decimal,
    ) -> tuple[Subscription, License]:
        # Marker first: a concurrent delivery fails here before writing anything else.
        self.db.add(
            ProcessedWebhookEvent(
                id=event.payment_id, provider=event.provider, event_type=event.event
            )
        )
        self.db.flush()

        now = datetime.now(UTC)
        end_date = plan_end_date(plan_type, now)
        subscription = Subscription(
            user_id=user.id,
            plugin_id=plugin.id,
            provider_id=provider.id,
            plan_type=plan_type,
            status=SubscriptionStatus.active,
            price=amount,
            external_id=event.payment_id,
            start_date=now,
            end_date=end_date,
            auto_renew=plan_type != PlanType.lifetime,
        )
        self.db.add(subscription)
        self.db.flush()

        license = License(
            user_id=user.id,
            plugin_id=plugin.id,
            subscription_id=subscription.id,
            license_key=generate_license_key(),
            max_domains=1,
            activated_domains=[],
            status=LicenseStatus.active,
            expires_at=end_date,
        )
        self.db.add(license)
        self.db.commit()
        self.db.refresh(subscription)
        self.db.refresh(license)
        logger.info(
            "Entitled user %s to plugin %s (subscription %s, license %s)",
            user.id,
            plugin.id,
            subscription.id,
            license.id,
            extra={"provider": event.provider, "payment_id": event.payment_id},
        )
        return subscription, license

    def _record_coupon_usage(
        self,
        event: PaymentEvent,
        user_id: uuid.UUID,
        subscription_id: uuid.UUID,
        final_amount: Decimal,
    ) -> None:
        coupon_id = _parse_uuid(_meta(event.metadata, "coupon_id", "couponId"))
        if coupon_id is None:
            return
        original = parse_amount(_meta(event.metadata, "original_amount", "originalAmount"))
        original = original if original is not None else final_amount
        discount = parse_amount(_meta(event.metadata, "discount_amount", "discountAmount"))
        discount = discount if discount is not None else max(
            Decimal("0.00"), original - final_amount
        )
        try:
            coupons.redeem(
                self.db,
                coupon_id=coupon_id,
                user_id=user_id,
                subscription_id=subscription_id,
                original_amount=original,
                discount_amount=discount,
                final_amount=final_amount,
            )
        except Exception:
            self.db.rollback()
            logger.exception(
                "Failed to record coupon usage; entitlement kept",
                extra={
                    "provider": event.provider,
                    "payment_id": event.payment_id,
                    "coupon_code": _meta(event.metadata, "coupon_code", "couponCode"),
                },
            )
