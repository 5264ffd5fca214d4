"""Pydantic schemas for the billing endpoints."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatusOut(BaseModel):
    """Subscription projection returned to the frontend (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    plan: str
    status: str
    current_period_end: Optional[str] = Field(default=None, alias="currentPeriodEnd")
    cancel_at_period_end: bool = Field(default=False, alias="cancelAtPeriodEnd")
    stripe_customer_id: Optional[str] = Field(default=None, alias="stripeCustomerId")
    stripe_subscription_id: Optional[str] = Field(default=None, alias="stripeSubscriptionId")
    is_admin: bool = Field(default=False, alias="isAdmin")


class WebhookAck(BaseModel):
    received: bool = True


class CheckoutIn(BaseModel):
    plan: str = Field(min_length=1)


class ChangePlanIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_plan: Optional[str] = Field(default=None, alias="newPlan")


class BillingActionOut(BaseModel):
    """Result of a checkout, cancel, reactivate or plan change request."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: Optional[str] = None
    url: Optional[str] = None
    cancel_at: Optional[str] = Field(default=None, alias="cancelAt")
    new_plan: Optional[str] = Field(default=None, alias="newPlan")
