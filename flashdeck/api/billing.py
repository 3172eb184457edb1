"""
Billing API routes.

- POST /api/billing/checkout/set/{set_id}            one-off purchase checkout
- POST /api/billing/checkout/subscription/{educator} monthly subscription checkout
- POST /api/webhooks/stripe                          Stripe webhook
- GET  /api/billing/status
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict
from starlette.concurrency import run_in_threadpool

from flashdeck.api.deps import get_access_service, get_cache
from flashdeck.core.auth import get_current_user_id
from flashdeck.core.cache import CacheStore
from flashdeck.core.fields import to_camel_key
from flashdeck.features.access.service import SetAccessService
from flashdeck.features.billing.service import (
    billing_enabled,
    process_webhook_event,
    start_set_checkout,
    start_subscription_checkout,
)


router = APIRouter(tags=["billing"])


class CheckoutRequest(BaseModel):
    """Redirect targets for the hosted checkout page."""
    model_config = ConfigDict(alias_generator=to_camel_key, populate_by_name=True)

    success_url: str
    cancel_url: str


class CheckoutResponse(BaseModel):
    url: str


@router.get("/billing/status")
def billing_status():
    return {"enabled": billing_enabled()}


@router.post("/billing/checkout/set/{set_id}", response_model=CheckoutResponse)
def checkout_set(
    set_id: str,
    body: CheckoutRequest,
    user_id: int = Depends(get_current_user_id),
    access: SetAccessService = Depends(get_access_service),
):
    url = start_set_checkout(user_id, set_id, body.success_url, body.cancel_url, access_service=access)
    return {"url": url}


@router.post("/billing/checkout/subscription/{educator_id}", response_model=CheckoutResponse)
def checkout_subscription(
    educator_id: str,
    body: CheckoutRequest,
    user_id: int = Depends(get_current_user_id),
):
    url = start_subscription_checkout(user_id, educator_id, body.success_url, body.cancel_url)
    return {"url": url}


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, cache: Optional[CacheStore] = Depends(get_cache)):
    """
    Handle Stripe webhooks.

    The raw body is required for signature verification. Redelivered events
    are acknowledged without creating duplicate rows.
    """
    body = await request.body()
    return await run_in_threadpool(process_webhook_event, dict(request.headers), body, cache=cache)
