"""Plain-text bodies for billing notifications."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from pdfapp.notifications.intents import (
    CANCELLATION,
    PAYMENT_CONFIRMATION,
    PLAN_CHANGE,
    PLAN_UPGRADE,
    NotificationIntent,
)

AUDIENCE_USER = "user"
AUDIENCE_ADMIN = "admin"


@dataclass(frozen=True)
class RenderedMessage:
    audience: str
    subject: str
    body: str


def _money(amount: int | None, currency: str | None) -> str:
    return f"{(currency or 'usd').upper()} {(amount or 0) / 100:.2f}"


def _date(value: datetime | None) -> str:
    return value.strftime("%B %d, %Y") if value else "the end of your billing period"


def _payment(intent: NotificationIntent, company: str) -> list[RenderedMessage]:
    c = intent.context
    plan = c["plan_name"].upper()
    amount = _money(c.get("amount"), c.get("currency"))
    user_body = (
        f"Hi {intent.user_name},\n\n"
        f"Thank you for subscribing to {company}. Your {plan} plan is now active.\n\n"
        f"Amount: {amount}\n"
        f"Billing period: {c.get('billing_period', 'Monthly')}\n"
        f"Transaction ID: {c.get('transaction_id')}\n\n"
        f"The {company} team\n"
    )
    admin_body = (
        f"New payment received.\n\n"
        f"Customer: {intent.user_name} <{intent.user_email}>\n"
        f"Plan: {plan}\n"
        f"Amount: {amount}\n"
        f"Transaction ID: {c.get('transaction_id')}\n"
    )
    return [
        RenderedMessage(AUDIENCE_USER, f"Payment Confirmation - {plan} Plan Activated", user_body),
        RenderedMessage(AUDIENCE_ADMIN, f"New Payment: {amount} - {plan}", admin_body),
    ]


def _upgrade(intent: NotificationIntent, company: str) -> list[RenderedMessage]:
    old_plan = intent.context["old_plan"].upper()
    new_plan = intent.context["new_plan"].upper()
    user_body = (
        f"Hi {intent.user_name},\n\n"
        f"Your plan has been upgraded from {old_plan} to {new_plan}. "
        f"Your new features are available right away.\n\n"
        f"The {company} team\n"
    )
    admin_body = f"{intent.user_name} <{intent.user_email}> upgraded from {old_plan} to {new_plan}.\n"
    return [
        RenderedMessage(AUDIENCE_USER, f"Plan Upgraded - Welcome to {new_plan}!", user_body),
        RenderedMessage(AUDIENCE_ADMIN, f"Plan Upgrade: {intent.user_name} upgraded to {new_plan}", admin_body),
    ]


def _plan_change(intent: NotificationIntent, company: str) -> list[RenderedMessage]:
    old_plan = intent.context["old_plan"].upper()
    new_plan = intent.context["new_plan"].upper()
    effective = intent.context.get("effective_date", "")
    user_body = (
        f"Hi {intent.user_name},\n\n"
        f"Your subscription changed from {old_plan} to {new_plan}, effective {effective}.\n\n"
        f"The {company} team\n"
    )
    admin_body = (
        f"Event: Plan Changed\n"
        f"Customer: {intent.user_name} <{intent.user_email}>\n"
        f"Details: Changed from {old_plan} to {new_plan}\n"
        f"Date: {effective}\n"
    )
    return [
        RenderedMessage(AUDIENCE_USER, "Plan Updated Successfully - Welcome to Enhanced Features", user_body),
        RenderedMessage(AUDIENCE_ADMIN, f"[Admin Alert] Plan Changed - {intent.user_name}", admin_body),
    ]


def _cancellation(intent: NotificationIntent, company: str) -> list[RenderedMessage]:
    plan = intent.context["plan_name"].upper()
    access_end = _date(intent.context.get("access_end_date"))
    user_body = (
        f"Hi {intent.user_name},\n\n"
        f"Your {plan} subscription has been canceled. "
        f"You keep access to paid features until {access_end}.\n\n"
        f"Subscription ID: {intent.context.get('subscription_id')}\n\n"
        f"The {company} team\n"
    )
    admin_body = (
        f"Event: Subscription Canceled\n"
        f"Customer: {intent.user_name} <{intent.user_email}>\n"
        f"Details: Plan: {plan}, Access until: {access_end}\n"
    )
    return [
        RenderedMessage(AUDIENCE_USER, "Subscription Canceled - We Hope to See You Again", user_body),
        RenderedMessage(AUDIENCE_ADMIN, f"[Admin Alert] Subscription Canceled - {intent.user_name}", admin_body),
    ]


RENDERERS: dict[str, Callable[[NotificationIntent, str], list[RenderedMessage]]] = {
    PAYMENT_CONFIRMATION: _payment,
    PLAN_UPGRADE: _upgrade,
    PLAN_CHANGE: _plan_change,
    CANCELLATION: _cancellation,
}


def render(intent: NotificationIntent, company: str) -> list[RenderedMessage]:
    try:
        renderer = RENDERERS[intent.kind]
    except KeyError:
        raise ValueError(f"Unknown notification kind: {intent.kind}") from None
    return renderer(intent, company)
