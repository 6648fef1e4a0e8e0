"""Stripe Checkout wrapper."""

import asyncio
from typing import Any

import stripe
import structlog
from stripe import StripeError

from subscriptions.config import StripeConfig
from subscriptions.errors import UpstreamGatewayError
from subscriptions.models.subscription import (
    CheckoutSession,
    PaymentSessionSnapshot,
    PlanQuote,
)

logger = structlog.get_logger(__name__)


def _as_dict(obj: dict | Any | None) -> dict:
    # Unexpanded references (plain id strings) and None carry no fields.
    if isinstance(obj, dict):
        return obj
    for attr in ("to_dict", "to_dict_recursive"):
        method = getattr(obj, attr, None)
        if callable(method):
            return method()
    return {}


class StripeService:
    """Encapsulates the Stripe SDK calls used by the subscription flow."""

    def __init__(self, config: StripeConfig, product_name: str = "Subscription") -> None:
        if not config.secret_key:
            raise ValueError("Stripe secret key is required")

        self.config = config
        self.product_name = product_name
        stripe.api_key = config.secret_key
        stripe.max_network_retries = config.max_network_retries

    async def create_checkout_session(
        self,
        *,
        account_id: str,
        quote: PlanQuote,
        customer_email: str | None = None,
    ) -> CheckoutSession:
        """Create an embedded one-off Checkout session for ``quote``.

        ``account_id`` and the plan travel as session metadata and come back
        unchanged on retrieval.
        """
        plan = quote.plan.value
        params: dict[str, Any] = {
            "ui_mode": "embedded",
            "mode": "payment",
            "customer_creation": "always",
            "invoice_creation": {"enabled": True},
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": quote.charge_currency,
                        "product_data": {
                            "name": f"{self.product_name} ({plan})",
                            "description": (
                                f"Displayed: {quote.display_amount} "
                                f"{quote.display_currency.upper()} | "
                                f"Charged: {quote.charge_amount:.2f} "
                                f"{quote.charge_currency.upper()}"
                            ),
                        },
                        "unit_amount": quote.unit_amount,
                    },
                    "quantity": 1,
                }
            ],
            "return_url": self.config.return_url,
            "client_reference_id": account_id,
            "metadata": {"account_id": account_id, "plan": plan},
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await asyncio.wait_for(
                asyncio.to_thread(stripe.checkout.Session.create, **params),
                timeout=self.config.request_timeout_seconds,
            )
        except (StripeError, TimeoutError) as e:
            logger.error(
                "stripe_checkout_create_failed",
                account_id=account_id,
                plan=plan,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise UpstreamGatewayError() from e

        return CheckoutSession(session_id=session.id, client_secret=session.client_secret)

    async def retrieve_checkout_session(self, session_id: str) -> PaymentSessionSnapshot:
        """Fetch a Checkout session with its invoice and card receipt links."""
        try:
            session = await asyncio.wait_for(
                asyncio.to_thread(
                    stripe.checkout.Session.retrieve,
                    session_id,
                    expand=["payment_intent", "invoice"],
                ),
                timeout=self.config.request_timeout_seconds,
            )
            data = _as_dict(session)

            receipt_url = None
            latest_charge = _as_dict(data.get("payment_intent")).get("latest_charge")
            if latest_charge:
                charge = await asyncio.wait_for(
                    asyncio.to_thread(stripe.Charge.retrieve, latest_charge),
                    timeout=self.config.request_timeout_seconds,
                )
                receipt_url = _as_dict(charge).get("receipt_url")
        except (StripeError, TimeoutError) as e:
            logger.error(
                "stripe_session_retrieve_failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise UpstreamGatewayError() from e

        return self.session_snapshot_from_object(data, receipt_url=receipt_url)

    def session_snapshot_from_object(
        self, session_obj: dict | Any, *, receipt_url: str | None = None
    ) -> PaymentSessionSnapshot:
        session = _as_dict(session_obj)
        invoice = _as_dict(session.get("invoice"))

        return PaymentSessionSnapshot(
            session_id=str(session.get("id", "")),
            payment_status=str(session.get("payment_status") or ""),
            metadata=dict(session.get("metadata") or {}),
            amount_total=session.get("amount_total"),
            currency=session.get("currency"),
            hosted_invoice_url=invoice.get("hosted_invoice_url"),
            invoice_pdf=invoice.get("invoice_pdf"),
            receipt_url=receipt_url,
        )
