"""Billing routes for Stripe integration."""
import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pdfapp.api.deps import get_billing_gateway, get_current_email, get_current_user
from pdfapp.billing.plans import UnknownPlanError, get_price_id, is_same_plan
from pdfapp.billing.projector import STATUS_ACTIVE, STATUS_INACTIVE, period_end
from pdfapp.billing.reconciler import SubscriptionReconciler, default_status
from pdfapp.billing.stripe_gateway import (
    StripeGateway,
    WebhookVerificationError,
    object_id,
    stripe_field,
)
from pdfapp.billing.timestamps import isoformat
from pdfapp.billing.webhooks import WebhookProcessor
from pdfapp.core.logging import get_logger
from pdfapp.db.models.user import User
from pdfapp.db.session import get_db
from pdfapp.schemas.billing import (
    BillingActionOut,
    ChangePlanIn,
    CheckoutIn,
    SubscriptionStatusOut,
    WebhookAck,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


def _apply_plan_swap(user: User, plan: str, subscription) -> None:
    user.subscription_plan = plan
    user.subscription_status = stripe_field(subscription, "status") or user.subscription_status
    user.subscription_current_period_end = period_end(subscription)


@router.post("/stripe/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        event = gateway.construct_event(payload, sig_header)
    except WebhookVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        return JSONResponse(status_code=400, content={"error": "Webhook signature verification failed"})

    try:
        await run_in_threadpool(WebhookProcessor(db, gateway).process, event)
    except Exception:
        # Already logged by the processor; a 5xx makes Stripe redeliver
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return WebhookAck(received=True)


@router.get("/billing/subscription", response_model=SubscriptionStatusOut)
def get_subscription(
    email: str = Depends(get_current_email),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    try:
        return SubscriptionReconciler(db, gateway).status_for(email)
    except Exception:
        db.rollback()
        logger.exception("Error fetching subscription for %s", email)
        return default_status()


@router.post("/stripe/checkout", response_model=BillingActionOut, response_model_exclude_none=True)
def create_checkout(
    payload: CheckoutIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    try:
        price_id = get_price_id(gateway.config, payload.plan)
    except UnknownPlanError:
        raise HTTPException(status_code=400, detail="Invalid plan selected")
    plan = payload.plan.strip().lower()

    try:
        if not user.stripe_customer_id:
            customer = gateway.create_customer(user.email, user.name)
            user.stripe_customer_id = object_id(customer)
            db.commit()

        # An active subscription is moved to the new price instead of starting a second one
        if user.stripe_subscription_id and user.subscription_status == STATUS_ACTIVE:
            try:
                subscription = gateway.retrieve_subscription(user.stripe_subscription_id)
                if stripe_field(subscription, "status") == STATUS_ACTIVE:
                    updated = gateway.swap_price(subscription, price_id)
                    _apply_plan_swap(user, plan, updated)
                    db.commit()
                    return BillingActionOut(message="Plan updated successfully", new_plan=plan)
            except stripe.StripeError:
                db.rollback()
                logger.exception("Error updating subscription %s; falling back to checkout", user.stripe_subscription_id)

        session = gateway.create_checkout_session(
            user.stripe_customer_id, price_id, user_id=str(user.id), plan=plan
        )
        return BillingActionOut(url=stripe_field(session, "url"))
    except stripe.StripeError:
        db.rollback()
        logger.exception("Error creating checkout session for %s", user.email)
        raise HTTPException(status_code=500, detail="Error creating checkout session")


@router.post("/billing/cancel", response_model=BillingActionOut, response_model_exclude_none=True)
def cancel_subscription(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    if user.stripe_subscription_id and user.subscription_status == STATUS_ACTIVE:
        try:
            subscription = gateway.set_cancel_at_period_end(user.stripe_subscription_id, True)
        except stripe.StripeError:
            logger.exception("Error cancelling subscription %s", user.stripe_subscription_id)
            raise HTTPException(status_code=500, detail="Failed to cancel subscription")

        # Access continues until the period ends; the deletion webhook finishes the job
        return BillingActionOut(
            message="Subscription will be cancelled at the end of the current billing period.",
            cancel_at=isoformat(period_end(subscription)),
        )

    user.subscription_plan = "free"
    user.subscription_status = STATUS_INACTIVE
    user.stripe_subscription_id = None
    user.subscription_current_period_end = None
    db.commit()
    return BillingActionOut(message="You are now on the free plan.")


@router.post("/billing/reactivate", response_model=BillingActionOut, response_model_exclude_none=True)
def reactivate_subscription(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    if not user.stripe_subscription_id:
        raise HTTPException(status_code=400, detail="No subscription found")

    try:
        gateway.set_cancel_at_period_end(user.stripe_subscription_id, False)
    except stripe.StripeError:
        logger.exception("Error reactivating subscription %s", user.stripe_subscription_id)
        raise HTTPException(status_code=500, detail="Failed to reactivate subscription")

    user.subscription_status = STATUS_ACTIVE
    db.commit()
    return BillingActionOut(message="Subscription reactivated.")


@router.post("/billing/change-plan", response_model=BillingActionOut, response_model_exclude_none=True)
def change_plan(
    payload: ChangePlanIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    if not payload.new_plan:
        raise HTTPException(status_code=400, detail="Plan not specified")

    try:
        price_id = get_price_id(gateway.config, payload.new_plan)
    except UnknownPlanError:
        raise HTTPException(status_code=400, detail="Invalid plan selected")
    new_plan = payload.new_plan.strip().lower()

    if not user.stripe_subscription_id:
        raise HTTPException(status_code=400, detail="No active subscription found")
    if is_same_plan(user.subscription_plan, new_plan):
        raise HTTPException(status_code=400, detail="You are already on this plan")

    try:
        subscription = gateway.retrieve_subscription(user.stripe_subscription_id)
        if stripe_field(subscription, "status") != STATUS_ACTIVE:
            raise HTTPException(status_code=400, detail="Subscription is not active")

        updated = gateway.swap_price(subscription, price_id)
    except stripe.StripeError:
        logger.exception("Error changing plan for %s", user.email)
        raise HTTPException(status_code=500, detail="Failed to change plan")

    _apply_plan_swap(user, new_plan, updated)
    db.commit()
    return BillingActionOut(
        message=f"Successfully changed plan to {new_plan}",
        new_plan=new_plan,
    )
