import os
import sys
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import ModuleType

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

# Create a test engine BEFORE any app imports
_test_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Create a mock for the app.db module that uses our test engine
class TestBase(DeclarativeBase):
    pass


_TestSessionLocal = sessionmaker(bind=_test_engine, autoflush=False, autocommit=False)


# Create TimestampMixin for test models
class TimestampMixin:
    """Mixin that adds created_at / updated_at columns to any model."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


# Create a mock db module
mock_db_module = ModuleType("app.db")
mock_db_module.Base = TestBase
mock_db_module.TimestampMixin = TimestampMixin
mock_db_module.SessionLocal = _TestSessionLocal
mock_db_module.get_engine = lambda: _test_engine

# Also mock app.config to prevent .env loading
mock_config_module = ModuleType("app.config")


class MockSettings:
    database_url = "sqlite+pysqlite:///:memory:"
    secret_key = "test-secret-key"
    db_pool_size = 5
    db_max_overflow = 10
    db_pool_timeout = 30
    db_pool_recycle = 1800
    jwt_secret = "test-secret"
    jwt_algorithm = "HS256"
    checkout_currency = "BRL"
    monthly_plan_days = 30
    yearly_plan_days = 365
    coupon_strict_limits = True
    stripe_webhook_secret = ""
    payment_http_timeout = 5.0
    mercadopago_base_url = "https://api.mercadopago.test"
    cors_origins = ""


mock_config_module.settings = MockSettings()
mock_config_module.Settings = MockSettings
mock_config_module.validate_settings = lambda s: []

# Insert mocks before any app imports
sys.modules["app.config"] = mock_config_module
sys.modules["app.db"] = mock_db_module

# Set environment variables
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"

# Now import the models - they'll use our mocked db module
from app.models.billing import (  # noqa: E402
    Coupon,
    DiscountType,
    License,
    LicenseStatus,
    PaymentProvider,
    PaymentProviderType,
    PlanType,
    Subscription,
    SubscriptionStatus,
)
from app.models.plugin import Plugin  # noqa: E402
from app.models.user import User  # noqa: E402

# Create all tables
TestBase.metadata.create_all(_test_engine)

# Re-export Base for compatibility
Base = TestBase

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture(autouse=True)
def clean_tables(engine):
    """Empty every table after each test; the in-memory database is shared."""
    yield
    with engine.begin() as conn:
        for table in reversed(TestBase.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session(engine):
    """Create a database session for testing.

    Uses the same connection as the StaticPool engine to ensure
    all operations see the same data.
    """
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


@pytest.fixture()
def user(db_session):
    user = User(
        email=_unique_email(),
        username=f"buyer_{uuid.uuid4().hex[:8]}",
        first_name="Test",
        last_name="Buyer",
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def admin_user(db_session):
    admin = User(
        email=_unique_email(),
        username=f"admin_{uuid.uuid4().hex[:8]}",
        first_name="Admin",
        last_name="User",
        is_admin=True,
    )
    db_session.add(admin)
    db_session.commit()
    db_session.refresh(admin)
    return admin


@pytest.fixture()
def plugin(db_session):
    plugin = Plugin(
        name="SEO Toolkit",
        slug=f"seo-toolkit-{uuid.uuid4().hex[:8]}",
        description="Test plugin",
        price=Decimal("299.00"),
        monthly_price=Decimal("100.00"),
        yearly_price=Decimal("1000.00"),
    )
    db_session.add(plugin)
    db_session.commit()
    db_session.refresh(plugin)
    return plugin


@pytest.fixture()
def coupon_factory(db_session):
    """Build coupons with sensible defaults; override any column by keyword."""

    def _create(**overrides) -> Coupon:
        data = {
            "code": f"TEST{uuid.uuid4().hex[:6].upper()}",
            "name": "Test Coupon",
            "discount_type": DiscountType.percentage,
            "discount_value": Decimal("20.00"),
            "user_usage_limit": 1,
        }
        data.update(overrides)
        coupon = Coupon(**data)
        db_session.add(coupon)
        db_session.commit()
        db_session.refresh(coupon)
        return coupon

    return _create


@pytest.fixture()
def coupon(coupon_factory):
    return coupon_factory(code="SAVE20")


@pytest.fixture()
def stripe_provider(db_session):
    provider = PaymentProvider(
        name="stripe",
        type=PaymentProviderType.stripe,
        display_name="Card (Stripe)",
        is_active=True,
        is_default=True,
        config={"secret_key": "sk_test_123", "webhook_secret": STRIPE_WEBHOOK_SECRET},
    )
    db_session.add(provider)
    db_session.commit()
    db_session.refresh(provider)
    return provider


@pytest.fixture()
def provider_factory(db_session):
    def _create(**overrides) -> PaymentProvider:
        data = {
            "name": f"provider-{uuid.uuid4().hex[:6]}",
            "type": PaymentProviderType.mercadopago,
            "display_name": "Pix",
            "is_active": True,
            "is_default": False,
            "config": {},
        }
        data.update(overrides)
        provider = PaymentProvider(**data)
        db_session.add(provider)
        db_session.commit()
        db_session.refresh(provider)
        return provider

    return _create


@pytest.fixture()
def subscription(db_session, user, plugin):
    now = datetime.now(UTC)
    sub = Subscription(
        user_id=user.id,
        plugin_id=plugin.id,
        plan_type=PlanType.monthly,
        status=SubscriptionStatus.active,
        price=Decimal("100.00"),
        start_date=now,
        end_date=now + timedelta(days=30),
    )
    db_session.add(sub)
    db_session.commit()
    db_session.refresh(sub)
    return sub


@pytest.fixture()
def license_factory(db_session, user, plugin):
    def _create(**overrides) -> License:
        data = {
            "user_id": user.id,
            "plugin_id": plugin.id,
            "license_key": "-".join(uuid.uuid4().hex[i:i + 8].upper() for i in range(0, 32, 8)),
            "max_domains": 1,
            "activated_domains": [],
            "status": LicenseStatus.active,
            "expires_at": datetime.now(UTC) + timedelta(days=30),
        }
        data.update(overrides)
        license = License(**data)
        db_session.add(license)
        db_session.commit()
        db_session.refresh(license)
        return license

    return _create


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def client(db_session):
    """Create a test client with database dependency override."""
    from app.api.deps import get_db as api_get_db
    from app.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[api_get_db] = override_get_db

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _create_access_token(user_id: str) -> str:
    """Create a JWT the way the user service issues them."""
    secret = os.getenv("JWT_SECRET", "test-secret")
    algorithm = os.getenv("JWT_ALGORITHM", "HS256")
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "typ": "access",
        "exp": int((now + timedelta(minutes=15)).timestamp()),
        "iat": int(now.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


@pytest.fixture()
def auth_headers(user):
    return {"Authorization": f"Bearer {_create_access_token(str(user.id))}"}


@pytest.fixture()
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {_create_access_token(str(admin_user.id))}"}
