from app.models.user import User  # noqa: F401
from app.models.plugin import Plugin  # noqa: F401
from app.models.billing import (  # noqa: F401
    Coupon,
    CouponUsage,
    DiscountType,
    License,
    LicenseStatus,
    PaymentProvider,
    PaymentProviderType,
    PlanType,
    ProcessedWebhookEvent,
    Subscription,
    SubscriptionStatus,
)
