"""
Read-side reconciliation of the cached subscription projection.

Status reads gate UI across the whole app, so this never raises because of
Stripe: provider failures fall back to the locally cached values.
"""
from __future__ import annotations

from datetime import datetime, timezone

import stripe
from sqlalchemy.orm import Session

from pdfapp.billing.lookup import find_user_by_email
from pdfapp.billing.plans import ADMIN_PLAN, FREE_PLAN
from pdfapp.billing.projector import (
    STATUS_ACTIVE,
    STATUS_CANCELED,
    STATUS_INACTIVE,
    project_subscription,
)
from pdfapp.billing.stripe_gateway import StripeGateway
from pdfapp.billing.timestamps import as_utc, isoformat
from pdfapp.core.logging import get_logger
from pdfapp.db.models.user import User
from pdfapp.schemas.billing import SubscriptionStatusOut

logger = get_logger(__name__)


def default_status() -> SubscriptionStatusOut:
    return SubscriptionStatusOut(plan=FREE_PLAN, status=STATUS_INACTIVE)


def admin_status(user: User) -> SubscriptionStatusOut:
    return SubscriptionStatusOut(
        plan=ADMIN_PLAN,
        status=STATUS_ACTIVE,
        current_period_end=None,
        cancel_at_period_end=False,
        stripe_customer_id=user.stripe_customer_id,
        stripe_subscription_id=user.stripe_subscription_id,
        is_admin=True,
    )


class SubscriptionReconciler:
    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway

    def status_for(self, email: str, now: datetime | None = None) -> SubscriptionStatusOut:
        now = now or datetime.now(timezone.utc)

        user = find_user_by_email(self.db, email)
        if user is None:
            return default_status()
        if user.is_admin:
            return admin_status(user)

        cancel_at_period_end = None
        if (
            user.stripe_subscription_id
            and user.subscription_status == STATUS_ACTIVE
            and user.subscription_current_period_end is None
        ):
            cancel_at_period_end = self._refresh_missing_period(user)
        elif user.stripe_subscription_id:
            cancel_at_period_end = self._refresh_status(user)

        period_end = as_utc(user.subscription_current_period_end)
        expired = period_end is not None and now > period_end

        if cancel_at_period_end is None:
            # Stripe was not consulted; infer from the cached status
            cancel_at_period_end = user.subscription_status == STATUS_CANCELED and not expired

        plan, status = user.subscription_plan, user.subscription_status
        if expired and status == STATUS_ACTIVE:
            # Enforce expiry locally in case the deletion webhook is late or lost
            plan, status = FREE_PLAN, STATUS_INACTIVE

        return SubscriptionStatusOut(
            plan=plan,
            status=status,
            current_period_end=isoformat(period_end),
            cancel_at_period_end=cancel_at_period_end,
            stripe_customer_id=user.stripe_customer_id,
            stripe_subscription_id=user.stripe_subscription_id,
            is_admin=False,
        )

    def _refresh_missing_period(self, user: User) -> bool | None:
        """Active but no period end: take plan, period and status from Stripe."""
        try:
            projection = project_subscription(
                self.gateway.retrieve_subscription(user.stripe_subscription_id)
            )
            user.subscription_plan = projection.plan
            user.subscription_current_period_end = projection.current_period_end
            if projection.status:
                user.subscription_status = projection.status
            self.db.commit()
            logger.info(
                "Synchronized subscription %s for %s: plan=%s status=%s periodEnd=%s",
                user.stripe_subscription_id,
                user.email,
                projection.plan,
                projection.status,
                projection.current_period_end,
            )
            return projection.cancel_at_period_end
        except stripe.StripeError:
            self.db.rollback()
            logger.exception("Error fetching Stripe subscription %s", user.stripe_subscription_id)
            return None

    def _refresh_status(self, user: User) -> bool | None:
        """Learn the cancel flag and correct status drift."""
        try:
            projection = project_subscription(
                self.gateway.retrieve_subscription(user.stripe_subscription_id)
            )
            if projection.status and projection.status != user.subscription_status:
                logger.info(
                    "Subscription %s status drifted for %s: %s -> %s",
                    user.stripe_subscription_id,
                    user.email,
                    user.subscription_status,
                    projection.status,
                )
                user.subscription_status = projection.status
                self.db.commit()
            return projection.cancel_at_period_end
        except stripe.StripeError:
            self.db.rollback()
            logger.exception("Error fetching Stripe subscription %s", user.stripe_subscription_id)
            return None
