"""
Billing provider protocol.

Defines the interface for payment providers (Stripe, etc.) so the webhook and
checkout logic never touches provider SDK objects directly.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from flashdeck.core.errors import AppError


@dataclass
class BillingWebhookResult:
    """Normalized webhook event."""
    event_id: str
    event_type: str
    kind: Optional[str] = None  # purchase | subscription
    user_id: Optional[int] = None
    set_id: Optional[int] = None
    educator_id: Optional[int] = None
    session_id: Optional[str] = None
    subscription_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class BillingProvider(Protocol):

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
        """
        Create a hosted checkout session.

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """
        Verify webhook signature and parse event.

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(AppError):
    """Provider API failure."""
    code = "billing_error"
    status_code = 502


class BillingDisabledError(AppError):
    code = "billing_disabled"
    status_code = 503


class BillingWebhookError(BillingProviderError):
    """Rejected webhook: bad signature, bad payload or missing secret."""
    code = "invalid_webhook"
    status_code = 400
