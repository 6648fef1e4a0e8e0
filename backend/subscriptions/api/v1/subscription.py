"""Subscription API endpoints."""

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from subscriptions.auth import AuthenticatedUser, CurrentUser
from subscriptions.models.subscription import (
    SubscriptionRecord,
    SubscriptionReport,
    SubscriptionView,
)
from subscriptions.services.subscription_service import SubscriptionService


router = APIRouter(prefix="/subscription", tags=["subscription"])


class CheckoutRequest(BaseModel):
    """Checkout session request."""

    plan: str = Field(description="Requested paid plan: 'monthly' or 'yearly'")


class CheckoutResponse(BaseModel):
    """Embedded checkout session plus the price shown and charged."""

    client_secret: str
    session_id: str
    plan: str
    display_amount: Decimal
    display_currency: str
    charge_amount: Decimal
    charge_currency: str


class ConfirmRequest(BaseModel):
    session_id: str = ""


class ConfirmResponse(BaseModel):
    ok: bool = True
    subscription: SubscriptionRecord
    already_confirmed: bool = False


class HistoryResponse(BaseModel):
    subscription: SubscriptionRecord | None = None


def get_subscription_service(request: Request) -> SubscriptionService:
    service = getattr(request.app.state, "subscription_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Subscription service unavailable")
    return service


SubscriptionServiceDep = Annotated[SubscriptionService, Depends(get_subscription_service)]


async def require_active_subscription(
    user: CurrentUser, service: SubscriptionServiceDep
) -> AuthenticatedUser:
    """Route guard: 402 when the caller's entitlement is locked."""
    await service.require_access(user.id, user.role)
    return user


ActiveSubscriber = Annotated[AuthenticatedUser, Depends(require_active_subscription)]


@router.get("/status", response_model=SubscriptionView)
async def subscription_status(
    user: CurrentUser, service: SubscriptionServiceDep
) -> SubscriptionView:
    """Return the entitlement of the authenticated account (starts the trial on first call)."""
    return await service.get_status(user.id, user.role)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    user: CurrentUser,
    service: SubscriptionServiceDep,
) -> CheckoutResponse:
    """Create an embedded Stripe Checkout session for a paid plan."""
    started = await service.start_checkout(user.id, body.plan, customer_email=user.email)
    return CheckoutResponse(
        client_secret=started.session.client_secret,
        session_id=started.session.session_id,
        plan=started.quote.plan.value,
        display_amount=started.quote.display_amount,
        display_currency=started.quote.display_currency,
        charge_amount=started.quote.charge_amount,
        charge_currency=started.quote.charge_currency,
    )


@router.post("/confirm", response_model=ConfirmResponse)
async def confirm_checkout(
    body: ConfirmRequest,
    user: CurrentUser,
    service: SubscriptionServiceDep,
) -> ConfirmResponse:
    """Check a checkout session with Stripe and extend the paid window once it is paid."""
    result = await service.confirm_checkout(user.id, body.session_id)
    return ConfirmResponse(
        subscription=result.subscription,
        already_confirmed=result.already_confirmed,
    )


@router.get("/access")
async def check_access(user: ActiveSubscriber) -> dict:
    """Cheap probe for clients: 200 when the account may use gated features, 402 when locked."""
    return {"allowed": True, "account_id": user.id}


@router.get("/history", response_model=HistoryResponse)
async def subscription_history(
    user: CurrentUser, service: SubscriptionServiceDep
) -> HistoryResponse:
    """Stored subscription record of the authenticated account, if any."""
    return HistoryResponse(subscription=await service.get_history(user.id))


@router.get("/admin/list", response_model=SubscriptionReport)
async def list_subscriptions(
    user: CurrentUser, service: SubscriptionServiceDep
) -> SubscriptionReport:
    """Every account's subscription with payment links. Admin only."""
    return await service.list_subscriptions(user.role)
