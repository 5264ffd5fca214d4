"""Notification intents produced by the billing flow."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

PAYMENT_CONFIRMATION = "payment_confirmation"
PLAN_UPGRADE = "plan_upgrade"
PLAN_CHANGE = "plan_change"
CANCELLATION = "subscription_canceled"
ADMIN_ALERT = "admin_alert"


@dataclass(frozen=True)
class NotificationIntent:
    """Something a user (and the admin) should hear about after a state change."""

    kind: str
    user_email: str
    user_name: str = "User"
    user_id: uuid.UUID | None = None
    context: dict[str, Any] = field(default_factory=dict)
