"""Resolution of Stripe customers to local users."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from pdfapp.billing.stripe_gateway import StripeGateway, stripe_field
from pdfapp.db.models.user import User


@dataclass(frozen=True)
class Matched:
    user: User
    customer: Any


@dataclass(frozen=True)
class Unmatched:
    reason: str


UserMatch = Union[Matched, Unmatched]


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == email)).scalar_one_or_none()


def match_customer(db: Session, gateway: StripeGateway, customer_id: str) -> UserMatch:
    """
    Users are keyed by email, so the Stripe customer is fetched to learn it.
    A customer without a local user is expected (the webhook can beat signup).
    """
    customer = gateway.retrieve_customer(customer_id)
    if stripe_field(customer, "deleted"):
        return Unmatched(f"customer {customer_id} is deleted")

    email = stripe_field(customer, "email")
    if not email:
        return Unmatched(f"customer {customer_id} has no email")

    user = find_user_by_email(db, email)
    if user is None:
        return Unmatched(f"no user found for customer email {email}")
    return Matched(user=user, customer=customer)
