"""Seed a demo plugin, a default Stripe provider and two coupons."""

import os
from decimal import Decimal

from dotenv import load_dotenv
from sqlalchemy import select

from app.db import SessionLocal
from app.models.billing import Coupon, DiscountType, PaymentProvider, PaymentProviderType
from app.models.plugin import Plugin


def _seed_plugin(db) -> Plugin:
    plugin = db.scalar(select(Plugin).where(Plugin.slug == "demo-plugin"))
    if plugin:
        return plugin
    plugin = Plugin(
        name="Demo Plugin",
        slug="demo-plugin",
        description="Sample catalog entry for local checkout testing",
        price=Decimal("299.00"),
        monthly_price=Decimal("29.90"),
        yearly_price=Decimal("299.00"),
    )
    db.add(plugin)
    return plugin


def _seed_provider(db) -> None:
    if db.scalar(select(PaymentProvider.id).where(PaymentProvider.is_default.is_(True))):
        return
    db.add(
        PaymentProvider(
            name="stripe",
            type=PaymentProviderType.stripe,
            display_name="Card (Stripe)",
            is_active=True,
            is_default=True,
            config={
                "secret_key": os.getenv("STRIPE_SECRET_KEY", ""),
                "webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            },
        )
    )


def _seed_coupons(db) -> None:
    seeds = [
        ("SAVE20", "20% off", DiscountType.percentage, Decimal("20"), None),
        ("FLAT10", "10 off", DiscountType.fixed, Decimal("10"), Decimal("5")),
    ]
    for code, name, discount_type, value, cap in seeds:
        if db.scalar(select(Coupon.id).where(Coupon.code == code)):
            continue
        db.add(
            Coupon(
                code=code,
                name=name,
                discount_type=discount_type,
                discount_value=value,
                maximum_discount=cap,
            )
        )


def main() -> None:
    load_dotenv()
    db = SessionLocal()
    try:
        _seed_plugin(db)
        _seed_provider(db)
        _seed_coupons(db)
        db.commit()
        print("Marketplace seed complete.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
