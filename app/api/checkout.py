"""Checkout and payment webhook routes.

Webhook handlers read ``await request.body()`` and hand the untouched bytes to
the adapter: signature checks are computed over the exact payload, so these
routes must never declare a parsed body parameter.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_user
from app.models.user import User
from app.schemas.checkout import SubscribeRequest, SubscribeResponse, WebhookAck
from app.services.checkout import CheckoutService
from app.services.gateways import get_gateway
from app.services.webhooks import WebhookService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/subscribe", response_model=SubscribeResponse)
async def subscribe(
    payload: SubscribeRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    svc = CheckoutService(db)
    return await svc.subscribe(
        user, payload.plugin_id, payload.plan_type, payload.coupon_code
    )


# Registered before the generic route so "stripe" is never parsed as a provider id.
@router.post("/webhook/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    """Handle Stripe events. No auth; the stripe-signature header is verified."""
    body = await request.body()
    svc = WebhookService(db)
    provider = svc.resolve_stripe_provider()
    await svc.process(
        provider,
        body,
        signature=request.headers.get("stripe-signature"),
        headers=request.headers,
    )
    return {"received": True}


@router.post("/webhook/{provider_id}", response_model=WebhookAck)
async def provider_webhook(
    provider_id: str, request: Request, db: Session = Depends(get_db)
) -> dict:
    """Handle a webhook for any configured provider."""
    body = await request.body()
    svc = WebhookService(db)
    provider = svc.resolve_provider(provider_id)
    gateway = get_gateway(provider)
    signature = (
        request.headers.get(gateway.signature_header)
        if gateway.signature_header
        else None
    )
    await svc.process(provider, body, signature=signature, headers=request.headers)
    return {"received": True}
