"""
Stripe webhook processing.

Every handler writes absolute values (the latest known plan, status and
period end) instead of applying deltas, so a redelivered or out-of-order
event converges on whatever payload was written last. Handlers return the
notifications they want sent; those are queued only after the state change
has been committed.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import stripe
from sqlalchemy.orm import Session

from pdfapp.billing.lookup import Matched, Unmatched, match_customer
from pdfapp.billing.plans import billing_period, is_plan_upgrade, is_same_plan
from pdfapp.billing.projector import (
    STATUS_ACTIVE,
    apply_full_projection,
    apply_status_only,
    mark_canceled,
    mark_past_due,
    project_subscription,
)
from pdfapp.billing.stripe_gateway import StripeGateway, object_id, stripe_field
from pdfapp.core.logging import get_logger
from pdfapp.db.models.user import User
from pdfapp.notifications.intents import (
    CANCELLATION,
    PAYMENT_CONFIRMATION,
    PLAN_CHANGE,
    PLAN_UPGRADE,
    NotificationIntent,
)
from pdfapp.notifications.outbox import dispatch_intents

logger = get_logger(__name__)

SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"

Handler = Callable[[Any, str], list[NotificationIntent]]


@dataclass(frozen=True)
class WebhookOutcome:
    event_type: str | None
    handled: bool
    notifications_queued: int = 0


def _user_name(user: User, customer: Any) -> str:
    return user.name or stripe_field(customer, "name") or "User"


def _invoice_subscription_id(invoice: Any) -> str | None:
    return object_id(stripe_field(invoice, "subscription")) or object_id(
        stripe_field(invoice, "parent", "subscription_details", "subscription")
    )


class WebhookProcessor:
    """Dispatches verified Stripe events to per-type handlers."""

    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway
        self._handlers: dict[str, Handler] = {
            SUBSCRIPTION_CREATED: self._subscription_changed,
            SUBSCRIPTION_UPDATED: self._subscription_changed,
            SUBSCRIPTION_DELETED: self._subscription_deleted,
            INVOICE_PAYMENT_SUCCEEDED: self._payment_succeeded,
            INVOICE_PAYMENT_FAILED: self._payment_failed,
            CHECKOUT_SESSION_COMPLETED: self._checkout_completed,
        }

    def process(self, event: Any) -> WebhookOutcome:
        event_type = stripe_field(event, "type")
        event_id = stripe_field(event, "id")
        handler = self._handlers.get(event_type)

        if handler is None:
            logger.info("[STRIPE WEBHOOK] Unhandled event type %s (%s)", event_type, event_id)
            return WebhookOutcome(event_type=event_type, handled=False)

        logger.info("[STRIPE WEBHOOK] Received event %s (%s)", event_type, event_id)
        obj = stripe_field(event, "data", "object")

        try:
            intents = handler(obj, event_type)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("[STRIPE WEBHOOK] Failed to process %s (%s)", event_type, event_id)
            raise

        queued = dispatch_intents(self.db, intents) if intents else 0
        return WebhookOutcome(event_type=event_type, handled=True, notifications_queued=queued)

    def _subscription_changed(self, subscription: Any, event_type: str) -> list[NotificationIntent]:
        projection = project_subscription(subscription)
        if not projection.customer_id:
            logger.warning("[STRIPE WEBHOOK] %s without customer; skipping", event_type)
            return []

        match = match_customer(self.db, self.gateway, projection.customer_id)
        if isinstance(match, Unmatched):
            logger.warning("[STRIPE WEBHOOK] %s; skipping %s", match.reason, event_type)
            return []

        user = match.user
        old_plan = user.subscription_plan or "free"

        if not projection.is_active:
            apply_status_only(user, projection)
            logger.info(
                "[STRIPE WEBHOOK] Subscription not active for user %s, status: %s",
                user.email,
                projection.status,
            )
            return []

        apply_full_projection(user, projection)
        logger.info(
            "[STRIPE WEBHOOK] Updated user %s to plan: %s, status: %s, periodEnd: %s",
            user.email,
            projection.plan,
            projection.status,
            projection.current_period_end,
        )

        if event_type != SUBSCRIPTION_UPDATED or is_same_plan(old_plan, projection.plan):
            return []

        kind = PLAN_UPGRADE if is_plan_upgrade(old_plan, projection.plan) else PLAN_CHANGE
        context = {"old_plan": old_plan, "new_plan": projection.plan}
        if kind == PLAN_CHANGE:
            context["effective_date"] = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return [
            NotificationIntent(
                kind=kind,
                user_email=user.email,
                user_name=_user_name(user, match.customer),
                user_id=user.id,
                context=context,
            )
        ]

    def _subscription_deleted(self, subscription: Any, event_type: str) -> list[NotificationIntent]:
        projection = project_subscription(subscription)

        if projection.subscription_id:
            count = mark_canceled(self.db, projection.subscription_id)
            logger.info(
                "[STRIPE WEBHOOK] Subscription %s canceled for %d user(s)",
                projection.subscription_id,
                count,
            )

        if not projection.customer_id:
            return []

        # The cancellation itself is already written; the lookup only decides who gets told
        try:
            match = match_customer(self.db, self.gateway, projection.customer_id)
        except stripe.StripeError:
            logger.exception("[STRIPE WEBHOOK] Could not load customer %s", projection.customer_id)
            return []

        if isinstance(match, Unmatched):
            logger.warning("[STRIPE WEBHOOK] %s; no cancellation email", match.reason)
            return []

        user = match.user
        return [
            NotificationIntent(
                kind=CANCELLATION,
                user_email=user.email,
                user_name=_user_name(user, match.customer),
                user_id=user.id,
                context={
                    "plan_name": projection.plan,
                    "access_end_date": projection.current_period_end,
                    "subscription_id": projection.subscription_id,
                },
            )
        ]

    def _payment_succeeded(self, invoice: Any, event_type: str) -> list[NotificationIntent]:
        subscription_id = _invoice_subscription_id(invoice)
        customer_id = object_id(stripe_field(invoice, "customer"))
        if not subscription_id or not customer_id:
            logger.info("[STRIPE WEBHOOK] Invoice %s is not a subscription payment; skipping", object_id(invoice))
            return []

        match = match_customer(self.db, self.gateway, customer_id)
        if isinstance(match, Unmatched):
            logger.warning("[STRIPE WEBHOOK] %s; skipping %s", match.reason, event_type)
            return []

        subscription = self.gateway.retrieve_subscription(subscription_id)
        projection = project_subscription(subscription)

        user = match.user
        # A successful payment is the strongest signal of entitlement
        apply_full_projection(user, projection, status=STATUS_ACTIVE)
        user.stripe_customer_id = customer_id
        user.stripe_subscription_id = subscription_id

        return [
            self._payment_intent(
                match,
                projection.plan,
                amount=stripe_field(invoice, "amount_paid"),
                currency=stripe_field(invoice, "currency"),
                transaction_id=object_id(stripe_field(invoice, "payment_intent")) or object_id(invoice),
                period=billing_period(subscription),
            )
        ]

    def _payment_failed(self, invoice: Any, event_type: str) -> list[NotificationIntent]:
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            return []

        count = mark_past_due(self.db, subscription_id)
        logger.info("[STRIPE WEBHOOK] Subscription %s past_due for %d user(s)", subscription_id, count)
        return []

    def _checkout_completed(self, session: Any, event_type: str) -> list[NotificationIntent]:
        customer_id = object_id(stripe_field(session, "customer"))
        subscription_id = object_id(stripe_field(session, "subscription"))
        if not customer_id or not subscription_id:
            logger.info("[STRIPE WEBHOOK] Checkout session %s has no subscription; skipping", object_id(session))
            return []

        match = match_customer(self.db, self.gateway, customer_id)
        if isinstance(match, Unmatched):
            logger.warning("[STRIPE WEBHOOK] %s; skipping %s", match.reason, event_type)
            return []

        subscription = self.gateway.retrieve_subscription(subscription_id)
        projection = project_subscription(subscription)

        user = match.user
        apply_full_projection(user, projection)
        user.stripe_customer_id = customer_id
        user.stripe_subscription_id = subscription_id
        logger.info("[STRIPE WEBHOOK] Checkout completed for user %s", user.email)

        return [
            self._payment_intent(
                match,
                projection.plan,
                amount=stripe_field(session, "amount_total"),
                currency=stripe_field(session, "currency"),
                transaction_id=object_id(stripe_field(session, "payment_intent")) or object_id(session),
                period=billing_period(subscription),
            )
        ]

    @staticmethod
    def _payment_intent(
        match: Matched,
        plan: str,
        *,
        amount: int | None,
        currency: str | None,
        transaction_id: str | None,
        period: str,
    ) -> NotificationIntent:
        user = match.user
        return NotificationIntent(
            kind=PAYMENT_CONFIRMATION,
            user_email=user.email,
            user_name=_user_name(user, match.customer),
            user_id=user.id,
            context={
                "plan_name": plan,
                "amount": amount or 0,
                "currency": currency or "usd",
                "transaction_id": transaction_id,
                "billing_period": period,
            },
        )
