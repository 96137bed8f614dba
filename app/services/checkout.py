import logging
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import CHECKOUT_ATTEMPTS
from app.models.billing import PlanType
from app.models.plugin import Plugin
from app.models.user import User
from app.services.common import coerce_uuid, quantize_money
from app.services.coupons import coupons
from app.services.gateways import PaymentRequest, get_gateway
from app.services.payment_providers import payment_providers

logger = logging.getLogger(__name__)

NO_PROVIDER_MESSAGE = (
    "No payment provider configured. Please contact support or configure a "
    "payment provider in admin settings."
)


def plan_price(plugin: Plugin, plan_type: PlanType) -> Decimal | None:
    if plan_type == PlanType.monthly:
        price = plugin.monthly_price
    elif plan_type == PlanType.yearly:
        price = plugin.yearly_price
    else:
        price = plugin.price
    return quantize_money(price) if price is not None else None


class CheckoutService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _get_plugin(self, plugin_id) -> Plugin:
        plugin = self.db.get(Plugin, coerce_uuid(plugin_id))
        if not plugin or not plugin.is_active:
            raise HTTPException(status_code=404, detail="Plugin not found")
        return plugin

    async def subscribe(
        self,
        user: User,
        plugin_id,
        plan_type: str,
        coupon_code: str | None = None,
    ) -> dict:
        plugin = self._get_plugin(plugin_id)
        plan = PlanType(plan_type)
        original = plan_price(plugin, plan)
        if not original:
            raise HTTPException(
                status_code=400, detail="Invalid plan type or price not available"
            )

        provider = payment_providers.get_default(self.db)
        if provider is None:
            raise HTTPException(
                status_code=400,
                detail={"code": "no_payment_provider", "message": NO_PROVIDER_MESSAGE},
            )

        discount = Decimal("0.00")
        final = original
        coupon = None
        if coupon_code and coupon_code.strip():
            validation = coupons.validate(
                self.db, coupon_code, user.id, original, plugin_id=plugin.id
            )
            if not validation.valid:
                raise HTTPException(
                    status_code=400,
                    detail={
                        "code": "coupon_invalid",
                        "message": validation.reason,
                        "details": {"reason_code": validation.code},
                    },
                )
            coupon = validation.coupon
            discount = validation.discount_amount
            final = validation.final_amount

        gateway = get_gateway(provider)
        request = PaymentRequest(
            amount=final,
            currency=settings.checkout_currency,
            description=f"{plugin.name} - {plan.value} plan",
            user_id=str(user.id),
            user_email=user.email,
            plugin_id=str(plugin.id),
            plan_type=plan.value,
            metadata={
                "plugin_slug": plugin.slug,
                "original_amount": str(original),
                "final_amount": str(final),
                "discount_amount": str(discount),
                "coupon_code": coupon.code if coupon else None,
                "coupon_id": str(coupon.id) if coupon else None,
            },
        )
        result = await gateway.create_payment(request)
        provider_type = provider.type.value
        if not result.success:
            CHECKOUT_ATTEMPTS.labels(provider_type, "failed").inc()
            logger.warning(
                "Checkout failed: %s",
                result.error,
                extra={"provider": provider_type, "actor_id": str(user.id)},
            )
            raise HTTPException(
                status_code=400,
                detail={
                    "code": "payment_failed",
                    "message": result.error or "Payment creation failed",
                    "details": {"checkout_url": result.checkout_url},
                },
            )

        CHECKOUT_ATTEMPTS.labels(provider_type, "created").inc()
        logger.info(
            "Checkout created for plugin %s (%s)",
            plugin.id,
            plan.value,
            extra={
                "provider": provider_type,
                "payment_id": result.payment_id,
                "actor_id": str(user.id),
                "coupon_code": coupon.code if coupon else None,
            },
        )
        return {
            "success": True,
            "payment_url": result.checkout_url or result.client_secret,
            "client_secret": result.client_secret,
            "payment_id": result.payment_id,
            "provider": provider_type,
            "provider_name": provider.display_name,
            "pricing": {
                "original_amount": original,
                "discount_amount": discount,
                "final_amount": final,
                "currency": settings.checkout_currency,
                "coupon_applied": coupon is not None,
            },
        }
