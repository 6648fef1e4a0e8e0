"""Subscription and entitlement models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SubscriptionPlan(str, Enum):
    """Plans an account can be on."""

    TRIAL = "trial"
    MONTHLY = "monthly"
    YEARLY = "yearly"


PAID_PLANS = frozenset({SubscriptionPlan.MONTHLY, SubscriptionPlan.YEARLY})


class SubscriptionStatus(str, Enum):
    """Entitlement state derived from the record timestamps."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    LOCKED = "locked"


class SubscriptionRecord(BaseModel):
    """Persisted entitlement state for one account.

    ``status``, ``locked`` and ``reason`` are a cache of the last evaluation
    and are always safe to recompute.
    """

    account_id: str
    plan: SubscriptionPlan = SubscriptionPlan.TRIAL
    trial_ends_at: datetime
    period_ends_at: datetime | None = None
    grace_ends_at: datetime

    last_payment_session_id: str | None = None
    last_payment_at: datetime | None = None
    last_payment_amount: Decimal | None = None
    last_payment_currency: str | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf: str | None = None
    receipt_url: str | None = None

    status: SubscriptionStatus | None = None
    locked: bool = False
    reason: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None


class StatusDecision(BaseModel):
    """Output of the status engine."""

    status: SubscriptionStatus
    locked: bool
    reason: str


class SubscriptionView(BaseModel):
    """Status returned to the frontend for the calling account."""

    account_id: str
    status: SubscriptionStatus
    locked: bool
    reason: str
    plan: SubscriptionPlan
    trial_ends_at: datetime | None = None
    period_ends_at: datetime | None = None
    grace_ends_at: datetime | None = None
    last_payment_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PlanQuote(BaseModel):
    """Price shown to the customer and amount charged through Stripe."""

    plan: SubscriptionPlan
    display_amount: Decimal
    display_currency: str
    charge_amount: Decimal
    charge_currency: str
    unit_amount: int = Field(ge=0, description="Charge in the currency's smallest unit")


class CheckoutSession(BaseModel):
    """A Stripe Checkout session the client completes in the embedded UI."""

    session_id: str
    client_secret: str


class CheckoutStart(BaseModel):
    """Result of starting checkout for a plan."""

    session: CheckoutSession
    quote: PlanQuote


class PaymentSessionSnapshot(BaseModel):
    """Normalized Stripe Checkout session payload."""

    session_id: str
    payment_status: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    amount_total: int | None = None
    currency: str | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf: str | None = None
    receipt_url: str | None = None


class ConfirmationResult(BaseModel):
    """Outcome of reconciling a checkout session against the account."""

    subscription: SubscriptionRecord
    already_confirmed: bool = False


class AccountProfile(BaseModel):
    """Identity info joined into the admin report."""

    account_id: str
    email: str | None = None
    display_name: str | None = None


class SubscriptionReportRow(BaseModel):
    """One account in the admin subscription report."""

    account_id: str
    email: str | None = None
    name: str | None = None
    status: SubscriptionStatus
    locked: bool
    plan: SubscriptionPlan
    period_ends_at: datetime | None = None
    last_payment_at: datetime | None = None
    last_payment_amount: Decimal | None = None
    last_payment_currency: str | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf: str | None = None
    receipt_url: str | None = None


class SubscriptionReport(BaseModel):
    count: int
    rows: list[SubscriptionReportRow]
