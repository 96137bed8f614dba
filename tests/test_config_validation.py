"""Tests for configuration loading, validation and health checks."""

from __future__ import annotations

import importlib.util
import os
from dataclasses import replace
from unittest.mock import patch


def _load_config_module(name: str = "config_under_test"):
    """Import app/config.py directly; conftest replaces app.config in sys.modules."""
    spec = importlib.util.spec_from_file_location(name, "app/config.py")
    assert spec is not None
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # type: ignore[union-attr]
    return mod


def _configured(mod):
    return replace(
        mod.Settings(),
        jwt_secret="a" * 32,
        secret_key="my-secret",
        stripe_webhook_secret="whsec_1",
        checkout_currency="BRL",
        database_url="postgresql+psycopg://db.internal/plugin_market",
    )


class TestSettings:
    def test_env_overrides(self) -> None:
        with patch.dict(
            os.environ,
            {
                "CHECKOUT_CURRENCY": "USD",
                "MONTHLY_PLAN_DAYS": "31",
                "COUPON_STRICT_LIMITS": "false",
                "PAYMENT_HTTP_TIMEOUT": "7.5",
            },
        ):
            mod = _load_config_module("config_env")
        assert mod.settings.checkout_currency == "USD"
        assert mod.settings.monthly_plan_days == 31
        assert mod.settings.coupon_strict_limits is False
        assert mod.settings.payment_http_timeout == 7.5

    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            mod = _load_config_module("config_defaults")
        assert mod.settings.checkout_currency == "BRL"
        assert mod.settings.yearly_plan_days == 365
        assert mod.settings.coupon_strict_limits is True
        assert mod.settings.mercadopago_base_url == "https://api.mercadopago.com"


class TestValidateSettings:
    def test_no_warnings_when_configured(self) -> None:
        mod = _load_config_module()
        assert mod.validate_settings(_configured(mod)) == []

    def test_missing_jwt_secret(self) -> None:
        mod = _load_config_module()
        warnings = mod.validate_settings(replace(_configured(mod), jwt_secret=""))
        assert any("JWT_SECRET" in w for w in warnings)

    def test_short_jwt_secret(self) -> None:
        mod = _load_config_module()
        warnings = mod.validate_settings(replace(_configured(mod), jwt_secret="short"))
        assert any("shorter than 32" in w for w in warnings)

    def test_missing_stripe_webhook_secret(self) -> None:
        mod = _load_config_module()
        warnings = mod.validate_settings(replace(_configured(mod), stripe_webhook_secret=""))
        assert any("STRIPE_WEBHOOK_SECRET" in w for w in warnings)

    def test_bad_currency(self) -> None:
        mod = _load_config_module()
        warnings = mod.validate_settings(replace(_configured(mod), checkout_currency="REAL"))
        assert any("CHECKOUT_CURRENCY" in w for w in warnings)

    def test_localhost_in_production(self) -> None:
        mod = _load_config_module()
        s = replace(_configured(mod), database_url="postgresql+psycopg://localhost/x")
        with patch.dict(os.environ, {"ENVIRONMENT": "production"}):
            warnings = mod.validate_settings(s)
        assert any("localhost" in w for w in warnings)


class TestHealthCheck:
    def test_liveness_always_ok(self, client) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_readiness_checks_database(self, client) -> None:
        resp = client.get("/health/ready")
        assert resp.status_code == 200
        assert resp.json()["checks"] == {"database": "ok"}

    def test_metrics_endpoint(self, client) -> None:
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "webhook_events_total" in resp.text
