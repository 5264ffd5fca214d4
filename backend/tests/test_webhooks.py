"""
Tests for Stripe webhook processing.

Tests cover:
- Subscription created/updated projection and plan-change notifications
- Cancellation, payment success and payment failure
- Checkout completion
- Unmatched customers, unhandled events and notification isolation
"""

from datetime import datetime, timezone

import pytest
import stripe

from pdfapp.billing.timestamps import as_utc
from pdfapp.billing.webhooks import WebhookProcessor
from pdfapp.core.config import settings
from pdfapp.notifications import outbox as outbox_module
from pdfapp.notifications.intents import ADMIN_ALERT

from conftest import FUTURE_PERIOD_END, make_customer, make_event, make_subscription

FUTURE_DT = datetime(2030, 1, 1, tzinfo=timezone.utc)

UNMATCHED_CUSTOMERS = [
    pytest.param({"id": "cus_2", "object": "customer", "deleted": True}, id="deleted"),
    pytest.param({"id": "cus_2", "object": "customer", "email": None}, id="no-email"),
    pytest.param(make_customer("cus_2", "nobody@x.com"), id="unknown-email"),
]


def _snapshot(user):
    return (
        user.subscription_plan,
        user.subscription_status,
        user.stripe_customer_id,
        user.stripe_subscription_id,
        as_utc(user.subscription_current_period_end),
    )


@pytest.fixture
def processor(db, gateway):
    gateway.customers["cus_1"] = make_customer("cus_1", "a@x.com", "Alice")
    return WebhookProcessor(db, gateway)


class TestSubscriptionCreatedUpdated:
    def test_created_projects_active_subscription(self, processor, make_user, db, outbox):
        user = make_user()
        outcome = processor.process(
            make_event("customer.subscription.created", make_subscription(interval="year"))
        )

        db.refresh(user)
        assert outcome.handled
        assert _snapshot(user) == ("yearly", "active", "cus_1", "sub_1", FUTURE_DT)
        # Created events never notify
        assert outbox() == []

    def test_inactive_subscription_only_updates_status(self, processor, make_user, db):
        user = make_user(subscription_plan="free", subscription_status="inactive")
        processor.process(
            make_event("customer.subscription.created", make_subscription(status="incomplete"))
        )

        db.refresh(user)
        assert user.subscription_status == "incomplete"
        assert user.subscription_plan == "free"
        assert user.subscription_current_period_end is None
        assert user.stripe_subscription_id == "sub_1"

    def test_unmatched_customer_is_skipped(self, processor, db, gateway):
        gateway.customers["cus_2"] = make_customer("cus_2", "nobody@x.com")
        outcome = processor.process(
            make_event("customer.subscription.updated", make_subscription(customer_id="cus_2"))
        )
        assert outcome.handled
        assert outcome.notifications_queued == 0

    def test_updated_replay_is_idempotent(self, processor, make_user, db, outbox):
        user = make_user(subscription_plan="monthly", subscription_status="active", stripe_subscription_id="sub_1")
        event = make_event("customer.subscription.updated", make_subscription(interval="year"))

        processor.process(event)
        db.refresh(user)
        once = _snapshot(user)
        rows_after_first = len(outbox())

        processor.process(event)
        db.refresh(user)

        assert _snapshot(user) == once
        # The second delivery sees no plan change, so nothing new is queued
        assert len(outbox()) == rows_after_first

    def test_upgrade_notification(self, processor, make_user, outbox):
        make_user(subscription_plan="monthly", subscription_status="active")
        processor.process(make_event("customer.subscription.updated", make_subscription(interval="year")))

        rows = outbox(kind="plan_upgrade", to_email="a@x.com")
        assert len(rows) == 1
        assert "YEARLY" in rows[0].subject
        assert outbox(kind="plan_change") == []

    def test_downgrade_is_a_plan_change(self, processor, make_user, outbox):
        make_user(subscription_plan="yearly", subscription_status="active")
        processor.process(make_event("customer.subscription.updated", make_subscription(interval="month")))

        assert len(outbox(kind="plan_change", to_email="a@x.com")) == 1
        assert outbox(kind="plan_upgrade") == []

    def test_plan_change_to_inactive_status_does_not_notify(self, processor, make_user, outbox):
        make_user(subscription_plan="monthly", subscription_status="active")
        processor.process(
            make_event("customer.subscription.updated", make_subscription(interval="year", status="past_due"))
        )
        assert outbox() == []

    def test_admin_copy_when_admin_email_configured(self, processor, make_user, outbox, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@pdf.test")
        make_user(subscription_plan="monthly", subscription_status="active")
        processor.process(make_event("customer.subscription.updated", make_subscription(interval="year")))

        assert len(outbox(kind=ADMIN_ALERT, to_email="admin@pdf.test")) == 1

    def test_lookup_key_casing_is_not_a_plan_change(self, processor, make_user, outbox):
        make_user(subscription_plan="monthly", subscription_status="active")
        processor.process(
            make_event("customer.subscription.updated", make_subscription(lookup_key="Monthly"))
        )
        assert outbox() == []

    @pytest.mark.parametrize("customer", UNMATCHED_CUSTOMERS)
    def test_unmatched_customer_variants_are_skipped(self, processor, make_user, db, gateway, outbox, customer):
        user = make_user()
        gateway.customers["cus_2"] = customer

        outcome = processor.process(
            make_event("customer.subscription.updated", make_subscription(customer_id="cus_2"))
        )

        db.refresh(user)
        assert outcome.handled
        assert user.subscription_status == "inactive"
        assert user.stripe_subscription_id is None
        assert outbox() == []


class TestSubscriptionDeleted:
    @pytest.mark.parametrize("prior_status", ["active", "past_due", "incomplete", "canceled"])
    def test_resets_projection(self, processor, make_user, db, prior_status):
        user = make_user(
            subscription_plan="yearly",
            subscription_status=prior_status,
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
            subscription_current_period_end=FUTURE_DT,
        )
        processor.process(make_event("customer.subscription.deleted", make_subscription()))

        db.refresh(user)
        assert user.subscription_plan == "free"
        assert user.subscription_status == "canceled"
        assert user.stripe_subscription_id is None
        assert user.subscription_current_period_end is None

    def test_resets_even_without_matching_customer_email(self, processor, make_user, db, gateway):
        gateway.customers["cus_9"] = make_customer("cus_9", "someone-else@x.com")
        user = make_user(subscription_plan="monthly", subscription_status="active", stripe_subscription_id="sub_9")

        processor.process(
            make_event("customer.subscription.deleted", make_subscription("sub_9", customer_id="cus_9"))
        )

        db.refresh(user)
        assert (user.subscription_plan, user.subscription_status, user.stripe_subscription_id) == (
            "free",
            "canceled",
            None,
        )

    def test_cancellation_notification(self, processor, make_user, outbox):
        make_user(subscription_plan="monthly", subscription_status="active", stripe_subscription_id="sub_1")
        processor.process(make_event("customer.subscription.deleted", make_subscription()))

        rows = outbox(kind="subscription_canceled", to_email="a@x.com")
        assert len(rows) == 1
        assert "January 01, 2030" in rows[0].body_text

    def test_customer_lookup_failure_keeps_cancellation(self, processor, make_user, db, gateway, outbox):
        user = make_user(subscription_plan="monthly", subscription_status="active", stripe_subscription_id="sub_1")
        gateway.error = stripe.APIConnectionError("Stripe unavailable")

        outcome = processor.process(make_event("customer.subscription.deleted", make_subscription()))

        db.refresh(user)
        assert outcome.handled
        assert user.subscription_status == "canceled"
        assert outbox() == []


class TestInvoicePaymentSucceeded:
    def _invoice(self, **overrides):
        invoice = {
            "id": "in_1",
            "object": "invoice",
            "customer": "cus_1",
            "subscription": "sub_1",
            "amount_paid": 1999,
            "currency": "usd",
            "payment_intent": "pi_1",
        }
        invoice.update(overrides)
        return invoice

    def test_sets_active_and_refreshes_plan(self, processor, make_user, db, gateway, outbox):
        user = make_user(subscription_plan="free", subscription_status="past_due")
        gateway.subscriptions["sub_1"] = make_subscription(status="past_due", interval="year")

        processor.process(make_event("invoice.payment_succeeded", self._invoice()))

        db.refresh(user)
        assert _snapshot(user) == ("yearly", "active", "cus_1", "sub_1", FUTURE_DT)
        rows = outbox(kind="payment_confirmation", to_email="a@x.com")
        assert len(rows) == 1
        assert "USD 19.99" in rows[0].body_text
        assert "pi_1" in rows[0].body_text

    def test_subscription_under_invoice_parent(self, processor, make_user, db, gateway):
        user = make_user()
        gateway.subscriptions["sub_1"] = make_subscription()
        invoice = self._invoice(
            subscription=None,
            parent={"subscription_details": {"subscription": "sub_1"}},
        )

        processor.process(make_event("invoice.payment_succeeded", invoice))

        db.refresh(user)
        assert user.subscription_status == "active"
        assert user.stripe_subscription_id == "sub_1"

    @pytest.mark.parametrize("missing", ["subscription", "customer"])
    def test_skips_without_ids(self, processor, make_user, db, gateway, missing):
        user = make_user()
        processor.process(make_event("invoice.payment_succeeded", self._invoice(**{missing: None})))

        db.refresh(user)
        assert user.subscription_status == "inactive"
        assert gateway.calls == []

    @pytest.mark.parametrize("customer", UNMATCHED_CUSTOMERS)
    def test_unmatched_customer_is_skipped(self, processor, make_user, db, gateway, outbox, customer):
        user = make_user()
        gateway.customers["cus_2"] = customer
        gateway.subscriptions["sub_1"] = make_subscription(customer_id="cus_2")

        outcome = processor.process(make_event("invoice.payment_succeeded", self._invoice(customer="cus_2")))

        db.refresh(user)
        assert outcome.handled
        assert outcome.notifications_queued == 0
        assert _snapshot(user) == ("free", "inactive", None, None, None)
        assert outbox() == []
        assert ("retrieve_subscription", "sub_1") not in gateway.calls


class TestInvoicePaymentFailed:
    def test_only_status_changes(self, processor, make_user, db):
        user = make_user(
            subscription_plan="yearly",
            subscription_status="active",
            stripe_subscription_id="sub_1",
            subscription_current_period_end=FUTURE_DT,
        )
        other = make_user("b@x.com", subscription_plan="monthly", subscription_status="active", stripe_subscription_id="sub_2")

        processor.process(make_event("invoice.payment_failed", {"id": "in_2", "subscription": "sub_1"}))

        db.refresh(user)
        db.refresh(other)
        assert user.subscription_status == "past_due"
        assert user.subscription_plan == "yearly"
        assert as_utc(user.subscription_current_period_end) == FUTURE_DT
        assert other.subscription_status == "active"


class TestCheckoutSessionCompleted:
    def test_checkout_scenario(self, processor, make_user, db, gateway, outbox):
        user = make_user()
        gateway.subscriptions["sub_1"] = make_subscription(status="active", interval="month")
        session = {
            "id": "cs_1",
            "object": "checkout.session",
            "customer": "cus_1",
            "subscription": "sub_1",
            "amount_total": 199,
            "currency": "usd",
        }

        processor.process(make_event("checkout.session.completed", session))

        db.refresh(user)
        assert user.subscription_plan == "monthly"
        assert user.subscription_status == "active"
        assert user.stripe_customer_id == "cus_1"
        assert user.stripe_subscription_id == "sub_1"
        assert len(outbox(kind="payment_confirmation", to_email="a@x.com")) == 1

    def test_subscription_status_is_copied(self, processor, make_user, db, gateway):
        user = make_user()
        gateway.subscriptions["sub_1"] = make_subscription(status="incomplete")
        processor.process(
            make_event("checkout.session.completed", {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1"})
        )

        db.refresh(user)
        assert user.subscription_status == "incomplete"

    def test_one_time_checkout_is_skipped(self, processor, make_user, gateway):
        make_user()
        processor.process(
            make_event("checkout.session.completed", {"id": "cs_1", "customer": "cus_1", "subscription": None})
        )
        assert gateway.calls == []

    @pytest.mark.parametrize("customer", UNMATCHED_CUSTOMERS)
    def test_unmatched_customer_is_skipped(self, processor, make_user, db, gateway, outbox, customer):
        user = make_user()
        gateway.customers["cus_2"] = customer
        gateway.subscriptions["sub_1"] = make_subscription(customer_id="cus_2")

        outcome = processor.process(
            make_event("checkout.session.completed", {"id": "cs_1", "customer": "cus_2", "subscription": "sub_1"})
        )

        db.refresh(user)
        assert outcome.handled
        assert outcome.notifications_queued == 0
        assert _snapshot(user) == ("free", "inactive", None, None, None)
        assert outbox() == []


class TestDispatch:
    def test_unhandled_event_is_acknowledged(self, processor):
        outcome = processor.process(make_event("customer.created", {"id": "cus_1"}))
        assert not outcome.handled

    def test_handler_error_rolls_back_and_raises(self, processor, make_user, db, gateway):
        user = make_user()
        gateway.error = stripe.APIConnectionError("Stripe unavailable")

        with pytest.raises(stripe.APIConnectionError):
            processor.process(make_event("customer.subscription.updated", make_subscription()))

        db.refresh(user)
        assert user.subscription_status == "inactive"

    def test_notification_failure_does_not_undo_state(self, processor, make_user, db, gateway, outbox, monkeypatch):
        user = make_user()
        gateway.subscriptions["sub_1"] = make_subscription()

        def broken(*args, **kwargs):
            raise RuntimeError("template exploded")

        monkeypatch.setattr(outbox_module, "render", broken)

        outcome = processor.process(
            make_event("checkout.session.completed", {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1"})
        )

        db.refresh(user)
        assert outcome.notifications_queued == 0
        assert user.subscription_status == "active"
        assert user.subscription_plan == "monthly"
        assert outbox() == []

    def test_period_end_on_subscription_item(self, processor, make_user, db):
        user = make_user()
        subscription = make_subscription(current_period_end=None)
        subscription["items"]["data"][0]["current_period_end"] = FUTURE_PERIOD_END

        processor.process(make_event("customer.subscription.created", subscription))

        db.refresh(user)
        assert as_utc(user.subscription_current_period_end) == FUTURE_DT
