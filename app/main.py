from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import JSONResponse, Response

from app.api.checkout import router as checkout_router
from app.api.coupons import admin_router as admin_coupons_router
from app.api.coupons import router as coupons_router
from app.api.licenses import router as licenses_router
from app.api.payment_providers import router as payment_providers_router
from app.api.subscriptions import router as subscriptions_router
from app.config import settings, validate_settings
from app.db import SessionLocal
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[arg-type]
    # ── Startup ──────────────────────────────────────────
    for warning in validate_settings(settings):
        logger.warning("Config warning: %s", warning)
    logger.info("Application started (pid=%s)", os.getpid())
    yield

    # ── Shutdown ─────────────────────────────────────────
    logger.info("Application shutting down")


app = FastAPI(title="Plugin Marketplace Billing API", lifespan=lifespan)

configure_logging()
register_error_handlers(app)

cors_origins = [
    o.strip()
    for o in settings.cors_origins.split(",")
    if o.strip()
]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

app.add_middleware(ObservabilityMiddleware)


def _include_api_router(router: object, dependencies: list[Any] | None = None) -> None:
    app.include_router(router, dependencies=dependencies)  # type: ignore[arg-type]
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)  # type: ignore[arg-type]


_include_api_router(checkout_router)
_include_api_router(coupons_router)
_include_api_router(admin_coupons_router)
_include_api_router(payment_providers_router)
_include_api_router(subscriptions_router)
_include_api_router(licenses_router)


# ── Health Checks ────────────────────────────────────────


@app.get("/health")
def health_check() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/health/ready")
def readiness_check() -> JSONResponse:
    """Readiness probe: verifies database connectivity."""
    checks: dict[str, str] = {}
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            checks["database"] = "ok"
        finally:
            db.close()
    except Exception as e:
        checks["database"] = f"error: {e}"

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ok" if all_ok else "degraded", "checks": checks},
    )


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
