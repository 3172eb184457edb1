"""
Stripe billing provider.

Implements BillingProvider using the Stripe API. Handles webhook signature
verification and event parsing.
"""
from typing import Any, Dict, Optional
import json
import logging

import stripe

from flashdeck.core.config import settings
from flashdeck.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
)

logger = logging.getLogger(__name__)


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def create_checkout_session(
        self,
        *,
        name: str,
        amount_cents: int,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        recurring: bool = False,
    ) -> str:
        price_data: Dict[str, Any] = {
            "currency": "usd",
            "unit_amount": amount_cents,
            "product_data": {"name": name},
        }
        if recurring:
            price_data["recurring"] = {"interval": "month"}
        try:
            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=[{"price_data": price_data, "quantity": 1}],
                mode="subscription" if recurring else "payment",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                # Subscription objects carry their own metadata for later lifecycle events
                **({"subscription_data": {"metadata": metadata}} if recurring else {}),
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            payload = body.decode("utf-8") if isinstance(body, bytes) else body
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret)
            # Plain dicts downstream, not StripeObjects
            event = json.loads(payload)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        return self.parse_event(event)

    @staticmethod
    def parse_event(event: Dict[str, Any]) -> BillingWebhookResult:
        """Parse a Stripe event into a normalized BillingWebhookResult."""
        event_type = event["type"]
        data = event.get("data", {}).get("object", {}) or {}
        metadata = dict(data.get("metadata") or {})

        result = BillingWebhookResult(
            event_id=event["id"],
            event_type=event_type,
            kind=metadata.get("type"),
            user_id=_int_or_none(metadata.get("user_id")),
            set_id=_int_or_none(metadata.get("set_id")),
            educator_id=_int_or_none(metadata.get("educator_id")),
            metadata=metadata,
        )

        if event_type == "checkout.session.completed":
            result.session_id = data.get("id")
            result.subscription_id = data.get("subscription")
        elif event_type.startswith("customer.subscription."):
            result.subscription_id = data.get("id")

        return result
