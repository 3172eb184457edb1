"""
Billing service orchestrator.

Coordinates:
- Checkout for one-off set purchases and monthly educator subscriptions
- Webhook processing into purchase / subscription rows

All Stripe-specific code is in stripe_provider.py. Webhook handling is
idempotent through the unique constraints on purchases and subscriptions,
so redelivered events are harmless.
"""
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

from sqlalchemy import select

from flashdeck.core.cache import CacheStore
from flashdeck.core.config import settings
from flashdeck.core.database import get_db_session, sets, users
from flashdeck.core.errors import ConflictError, NotFoundError, ValidationError
from flashdeck.features.access.service import SetAccessService, parse_positive_int
from flashdeck.features.billing.provider import (
    BillingDisabledError,
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
)
from flashdeck.features.billing.stripe_provider import StripeProvider
from flashdeck.features.purchases.service import record_purchase
from flashdeck.features.subscriptions.service import cancel_by_stripe_id, is_subscribed, subscribe


logger = logging.getLogger(__name__)


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError:
        return None


def _require_provider() -> BillingProvider:
    provider = get_provider()
    if provider is None:
        raise BillingDisabledError("Stripe is not configured")
    return provider


def _to_cents(price: Decimal) -> int:
    return int((Decimal(price) * 100).quantize(Decimal("1")))


def start_set_checkout(
    user_id: int,
    set_id: Any,
    success_url: str,
    cancel_url: str,
    *,
    access_service: Optional[SetAccessService] = None,
) -> str:
    """
    Start a one-off checkout for a priced set.

    Raises:
        BillingDisabledError: Stripe not configured
        ValidationError: set has no price
        ConflictError: caller can already open the set
    """
    provider = _require_provider()
    access = access_service or SetAccessService()
    verdict = access.check_access(set_id, user_id)
    if verdict.has_access:
        raise ConflictError("You already have access to this set")

    with get_db_session() as session:
        row = session.execute(
            select(sets.c.title, sets.c.price).where(sets.c.id == verdict.set_id)
        ).first()
    # A priced subscriber-only set can still be bought outright
    if not row.price or row.price <= 0:
        raise ValidationError("This set cannot be purchased individually")

    return provider.create_checkout_session(
        name=row.title,
        amount_cents=_to_cents(row.price),
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"type": "purchase", "user_id": str(user_id), "set_id": str(verdict.set_id)},
    )


def start_subscription_checkout(user_id: int, educator_id: Any, success_url: str, cancel_url: str) -> str:
    provider = _require_provider()
    parsed = parse_positive_int(educator_id)
    if parsed is None:
        raise ValidationError("Invalid educator ID")
    if parsed == user_id:
        raise ValidationError("You cannot subscribe to yourself")

    with get_db_session() as session:
        name = session.execute(select(users.c.name).where(users.c.id == parsed)).scalar()
    if name is None:
        raise NotFoundError("Educator not found")
    if is_subscribed(user_id, parsed):
        raise ConflictError("Already subscribed")

    return provider.create_checkout_session(
        name=f"{name} subscription",
        amount_cents=settings.SUBSCRIPTION_PRICE_CENTS,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"type": "subscription", "user_id": str(user_id), "educator_id": str(parsed)},
        recurring=True,
    )


def apply_webhook_result(result: BillingWebhookResult, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    """Apply a verified event. Unknown event types are acknowledged and ignored."""
    if result.event_type == "checkout.session.completed":
        if result.user_id is None:
            raise BillingWebhookError("Checkout session is missing user metadata")
        if result.kind == "purchase":
            if result.set_id is None:
                raise BillingWebhookError("Purchase checkout is missing set metadata")
            outcome = record_purchase(result.user_id, result.set_id, stripe_session_id=result.session_id, cache=cache)
            return {"handled": True, "action": "purchase", "created": outcome["created"]}
        if result.kind == "subscription":
            if result.educator_id is None:
                raise BillingWebhookError("Subscription checkout is missing educator metadata")
            outcome = subscribe(
                result.user_id,
                result.educator_id,
                stripe_subscription_id=result.subscription_id,
                cache=cache,
            )
            return {"handled": True, "action": "subscription", "created": outcome["created"]}

    if result.event_type == "customer.subscription.deleted" and result.subscription_id:
        removed = cancel_by_stripe_id(result.subscription_id, cache=cache)
        return {"handled": True, "action": "unsubscribe", "removed": removed}

    return {"handled": False}


def process_webhook_event(headers: Dict[str, str], body: bytes, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    """
    Verify, parse and apply a billing webhook.

    Raises:
        BillingDisabledError: Stripe not configured
        BillingWebhookError: signature invalid or required metadata missing
    """
    provider = _require_provider()
    result = provider.handle_webhook(headers, body)
    outcome = apply_webhook_result(result, cache=cache)
    logger.info(
        "[billing] webhook processed",
        extra={"event_type": result.event_type, "event_id": result.event_id, "handled": outcome["handled"]},
    )
    return {"received": True, "eventId": result.event_id, **outcome}
