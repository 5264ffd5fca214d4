"""
Stripe access for the billing flow.

The gateway is constructed explicitly from a BillingConfig and passed to the
webhook processor, the reconciler and the billing routes. Nothing here touches
the module-level ``stripe.api_key``; every call carries its own key.
"""
from __future__ import annotations

from typing import Any

import stripe

from pdfapp.core.config import BillingConfig
from pdfapp.core.logging import get_logger

logger = get_logger(__name__)


class WebhookVerificationError(Exception):
    """Raised when a webhook payload cannot be authenticated or parsed."""


def stripe_field(obj: Any, *path: Any) -> Any:
    """
    Walk ``path`` through a Stripe object, dict or list.

    Returns None as soon as a step is missing, so callers never need to guard
    against partially populated payloads.
    """
    for key in path:
        if obj is None:
            return None
        try:
            obj = obj[key]
        except (KeyError, IndexError, TypeError, AttributeError):
            return None
    return obj


def object_id(value: Any) -> str | None:
    """Expandable references arrive either as an id string or as the expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return stripe_field(value, "id")


class StripeGateway:
    """Thin wrapper around the Stripe SDK calls the billing flow needs."""

    def __init__(self, config: BillingConfig):
        self.config = config
        if not config.api_key:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe calls will fail.")
        if not config.webhook_secret:
            logger.warning("No Stripe webhook secret configured. Webhooks will be rejected.")

    def construct_event(self, payload: bytes, sig_header: str | None) -> Any:
        if not self.config.webhook_secret:
            raise WebhookVerificationError("Webhook secret not configured")
        if not sig_header:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            return stripe.Webhook.construct_event(
                payload, sig_header, self.config.webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Invalid signature: {e}") from e
        except ValueError as e:
            raise WebhookVerificationError(f"Invalid payload: {e}") from e

    def retrieve_customer(self, customer_id: str) -> Any:
        return stripe.Customer.retrieve(customer_id, api_key=self.config.api_key)

    def create_customer(self, email: str, name: str | None = None) -> Any:
        params: dict[str, Any] = {"email": email}
        if name:
            params["name"] = name
        return stripe.Customer.create(api_key=self.config.api_key, **params)

    def retrieve_subscription(self, subscription_id: str) -> Any:
        return stripe.Subscription.retrieve(subscription_id, api_key=self.config.api_key)

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Any:
        return stripe.Subscription.modify(
            subscription_id,
            api_key=self.config.api_key,
            cancel_at_period_end=cancel,
        )

    def swap_price(self, subscription: Any, price_id: str) -> Any:
        """Move the subscription's first item to ``price_id`` with prorations."""
        item_id = stripe_field(subscription, "items", "data", 0, "id")
        return stripe.Subscription.modify(
            object_id(subscription),
            api_key=self.config.api_key,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="create_prorations",
        )

    def create_checkout_session(
        self, customer_id: str, price_id: str, *, user_id: str, plan: str
    ) -> Any:
        frontend_url = self.config.frontend_url
        return stripe.checkout.Session.create(
            api_key=self.config.api_key,
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=f"{frontend_url}/billing?success=true",
            cancel_url=f"{frontend_url}/pricing?canceled=true",
            metadata={"userId": user_id, "plan": plan},
        )
