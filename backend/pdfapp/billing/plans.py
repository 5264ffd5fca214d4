"""Plan catalog, plan-name derivation and plan ranking."""
from __future__ import annotations

from typing import Any

from pdfapp.billing.stripe_gateway import stripe_field
from pdfapp.core.config import BillingConfig

FREE_PLAN = "free"
DEFAULT_PAID_PLAN = "monthly"
ADMIN_PLAN = "pro"

INTERVAL_PLAN_NAMES = {
    "year": "yearly",
    "month": "monthly",
}

# TODO: yearly outranks enterprise here; decide whether yearly should rank as a
# billing-interval variant of its tier before adding more tiers.
PLAN_RANK = {
    "free": 0,
    "monthly": 1,
    "pro": 2,
    "premium": 3,
    "enterprise": 4,
    "yearly": 5,
}


class UnknownPlanError(ValueError):
    pass


def get_price_id(config: BillingConfig, plan: str) -> str:
    """Stripe price id for a purchasable plan."""
    price_ids = {
        "monthly": config.monthly_price_id,
        "yearly": config.yearly_price_id,
    }
    price_id = price_ids.get(normalize_plan(plan))
    if not price_id:
        raise UnknownPlanError(f"Invalid plan: {plan}")
    return price_id


def _is_billable_item(item: Any) -> bool:
    quantity = stripe_field(item, "quantity")
    if stripe_field(item, "deleted"):
        return False
    return isinstance(quantity, (int, float)) and not isinstance(quantity, bool) and quantity > 0


def primary_item(subscription: Any) -> Any:
    """First billable line item, or the first item when none qualifies."""
    items = stripe_field(subscription, "items", "data") or []
    for item in items:
        if _is_billable_item(item):
            return item
    return items[0] if items else None


def derive_plan_name(subscription: Any) -> str:
    """
    Plan name for a subscription: the price's lookup key when it has one,
    otherwise a name inferred from the billing interval. Never fails; untagged
    prices count as monthly.
    """
    price = stripe_field(primary_item(subscription), "price")

    lookup_key = stripe_field(price, "lookup_key")
    if isinstance(lookup_key, str) and lookup_key.strip():
        return lookup_key.strip()

    interval = stripe_field(price, "recurring", "interval")
    return INTERVAL_PLAN_NAMES.get(interval, DEFAULT_PAID_PLAN)


def billing_period(subscription: Any) -> str:
    interval = stripe_field(primary_item(subscription), "price", "recurring", "interval")
    return "Yearly" if interval == "year" else "Monthly"


def normalize_plan(plan: str | None) -> str:
    return (plan or "").strip().lower()


def is_same_plan(old_plan: str | None, new_plan: str | None) -> bool:
    return normalize_plan(old_plan) == normalize_plan(new_plan)


def plan_rank(plan: str | None) -> int:
    return PLAN_RANK.get(normalize_plan(plan), 0)


def is_plan_upgrade(old_plan: str | None, new_plan: str | None) -> bool:
    return plan_rank(new_plan) > plan_rank(old_plan)
