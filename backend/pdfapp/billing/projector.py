"""Projection of Stripe subscription objects onto local user rows."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from pdfapp.billing.plans import FREE_PLAN, derive_plan_name, primary_item
from pdfapp.billing.stripe_gateway import object_id, stripe_field
from pdfapp.billing.timestamps import to_datetime
from pdfapp.db.models.user import User

STATUS_ACTIVE = "active"
STATUS_CANCELED = "canceled"
STATUS_PAST_DUE = "past_due"
STATUS_INACTIVE = "inactive"


@dataclass(frozen=True)
class SubscriptionProjection:
    subscription_id: str | None
    customer_id: str | None
    plan: str
    status: str | None
    current_period_end: datetime | None
    cancel_at_period_end: bool

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE


def period_end(subscription: Any) -> datetime | None:
    # Newer API versions only carry the period on the subscription item
    value = stripe_field(subscription, "current_period_end")
    if value is None:
        value = stripe_field(primary_item(subscription), "current_period_end")
    return to_datetime(value)


def project_subscription(subscription: Any) -> SubscriptionProjection:
    return SubscriptionProjection(
        subscription_id=object_id(subscription),
        customer_id=object_id(stripe_field(subscription, "customer")),
        plan=derive_plan_name(subscription),
        status=stripe_field(subscription, "status"),
        current_period_end=period_end(subscription),
        cancel_at_period_end=bool(stripe_field(subscription, "cancel_at_period_end")),
    )


def _apply_ids(user: User, projection: SubscriptionProjection) -> None:
    if projection.customer_id:
        user.stripe_customer_id = projection.customer_id
    if projection.subscription_id:
        user.stripe_subscription_id = projection.subscription_id


def apply_full_projection(user: User, projection: SubscriptionProjection, *, status: str | None = None) -> None:
    """Overwrite every projection field with the latest known values."""
    _apply_ids(user, projection)
    user.subscription_status = status or projection.status or user.subscription_status
    user.subscription_plan = projection.plan
    user.subscription_current_period_end = projection.current_period_end


def apply_status_only(user: User, projection: SubscriptionProjection) -> None:
    """Non-active subscriptions update status and references; plan and period are kept."""
    _apply_ids(user, projection)
    if projection.status:
        user.subscription_status = projection.status


def mark_canceled(db: Session, subscription_id: str) -> int:
    result = db.execute(
        update(User)
        .where(User.stripe_subscription_id == subscription_id)
        .values(
            subscription_status=STATUS_CANCELED,
            subscription_plan=FREE_PLAN,
            stripe_subscription_id=None,
            subscription_current_period_end=None,
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


def mark_past_due(db: Session, subscription_id: str) -> int:
    result = db.execute(
        update(User)
        .where(User.stripe_subscription_id == subscription_id)
        .values(subscription_status=STATUS_PAST_DUE)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount
