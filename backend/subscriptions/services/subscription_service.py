"""Subscription lifecycle: trial creation, status refresh, checkout and confirmation."""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Protocol

import structlog
from dateutil.relativedelta import relativedelta

from subscriptions.config import SubscriptionConfig
from subscriptions.constants import PAID_PAYMENT_STATUS, REASON_PAYMENT_CONFIRMED
from subscriptions.errors import (
    AdminRequiredError,
    GatewayNotConfiguredError,
    InvalidSessionMetadataError,
    MissingSessionIdError,
    PaymentNotCompletedError,
    SubscriptionLockedError,
)
from subscriptions.models.subscription import (
    PAID_PLANS,
    CheckoutSession,
    CheckoutStart,
    ConfirmationResult,
    PaymentSessionSnapshot,
    PlanQuote,
    StatusDecision,
    SubscriptionPlan,
    SubscriptionRecord,
    SubscriptionReport,
    SubscriptionReportRow,
    SubscriptionStatus,
    SubscriptionView,
)
from subscriptions.services.clock import NowProvider, utcnow
from subscriptions.services.pricing import from_minor_units, parse_paid_plan, quote_plan
from subscriptions.services.status_engine import evaluate_status, is_admin
from subscriptions.services.subscription_store import AccountDirectory, SubscriptionRepository

logger = structlog.get_logger(__name__)

PLAN_PERIODS: dict[SubscriptionPlan, relativedelta] = {
    SubscriptionPlan.MONTHLY: relativedelta(months=1),
    SubscriptionPlan.YEARLY: relativedelta(years=1),
}


class PaymentGateway(Protocol):
    """Checkout provider contract."""

    async def create_checkout_session(
        self, *, account_id: str, quote: PlanQuote, customer_email: str | None = None
    ) -> CheckoutSession:
        """Open a payment session carrying ``account_id`` and plan as metadata."""

    async def retrieve_checkout_session(self, session_id: str) -> PaymentSessionSnapshot:
        """Fetch the payment outcome of a session."""


def _cache_fields(decision: StatusDecision) -> dict:
    return {"status": decision.status, "locked": decision.locked, "reason": decision.reason}


class SubscriptionService:
    """Owns every mutation of subscription records."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        config: SubscriptionConfig,
        gateway: PaymentGateway | None = None,
        directory: AccountDirectory | None = None,
        now_provider: NowProvider = utcnow,
    ) -> None:
        self.repository = repository
        self.config = config
        self.gateway = gateway
        self.directory = directory
        self.now_provider = now_provider
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _grace_end(self, base: datetime) -> datetime:
        return base + timedelta(days=self.config.grace_days)

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise GatewayNotConfiguredError()
        return self.gateway

    async def _load_or_create_record(self, account_id: str) -> SubscriptionRecord:
        record = await self.repository.get_record(account_id)
        if record is not None:
            return record

        now = self.now_provider()
        trial_ends_at = now + timedelta(days=self.config.trial_days)
        trial = SubscriptionRecord(
            account_id=account_id,
            plan=SubscriptionPlan.TRIAL,
            trial_ends_at=trial_ends_at,
            grace_ends_at=self._grace_end(trial_ends_at),
            created_at=now,
        )
        trial = trial.model_copy(update=_cache_fields(evaluate_status(now, trial)))
        record = await self.repository.create_record(trial)
        logger.info(
            "subscription_trial_created",
            account_id=account_id,
            trial_ends_at=record.trial_ends_at.isoformat(),
        )
        return record

    @staticmethod
    def _view(record: SubscriptionRecord, decision: StatusDecision) -> SubscriptionView:
        return SubscriptionView(
            account_id=record.account_id,
            status=decision.status,
            locked=decision.locked,
            reason=decision.reason,
            plan=record.plan,
            trial_ends_at=record.trial_ends_at,
            period_ends_at=record.period_ends_at,
            grace_ends_at=record.grace_ends_at,
            last_payment_at=record.last_payment_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    async def get_status(self, account_id: str, role: str | None = None) -> SubscriptionView:
        """Return the account's current entitlement, creating a trial on first query.

        The cached status written back to the record is the role-free
        evaluation; the admin bypass only shapes the returned view.
        """
        async with self._locks[account_id]:
            record = await self._load_or_create_record(account_id)
            now = self.now_provider()

            decision = evaluate_status(now, record)
            if (record.status, record.locked, record.reason) != (
                decision.status,
                decision.locked,
                decision.reason,
            ):
                record = await self.repository.upsert_record(account_id, _cache_fields(decision))
                logger.info(
                    "subscription_status_refreshed",
                    account_id=account_id,
                    status=decision.status.value,
                    locked=decision.locked,
                )

            return self._view(record, evaluate_status(now, record, role))

    async def require_access(self, account_id: str, role: str | None = None) -> SubscriptionView:
        """Status query that refuses locked accounts."""
        view = await self.get_status(account_id, role)
        if view.locked:
            raise SubscriptionLockedError()
        return view

    async def get_history(self, account_id: str) -> SubscriptionRecord | None:
        """Stored record as-is, without creating one."""
        return await self.repository.get_record(account_id)

    async def start_checkout(
        self,
        account_id: str,
        plan: str | SubscriptionPlan,
        *,
        customer_email: str | None = None,
    ) -> CheckoutStart:
        """
        Open a checkout session for a paid plan.

        Does not touch the subscription record: entitlement only changes on
        confirmation.

        Raises:
            InvalidPlanError: plan is not monthly or yearly.
            GatewayNotConfiguredError: no Stripe client.
            UpstreamGatewayError: Stripe call failed.
        """
        paid_plan = parse_paid_plan(plan)
        gateway = self._require_gateway()
        quote = quote_plan(paid_plan, self.config)

        session = await gateway.create_checkout_session(
            account_id=account_id, quote=quote, customer_email=customer_email
        )
        logger.info(
            "subscription_checkout_created",
            account_id=account_id,
            plan=paid_plan.value,
            session_id=session.session_id,
            unit_amount=quote.unit_amount,
            currency=quote.charge_currency,
        )
        return CheckoutStart(session=session, quote=quote)

    async def confirm_checkout(self, account_id: str, session_id: str | None) -> ConfirmationResult:
        """
        Reconcile a paid checkout session into the account's entitlement.

        Safe to call repeatedly with the same session: once a session is the
        recorded last payment it is returned as already confirmed without
        contacting Stripe, whatever the cached status. This holds after the
        paid window has lapsed too, so an old session never re-opens access;
        only a new payment does. The new paid window always starts at ``now``;
        time left on a previous window is not carried over.

        Raises:
            MissingSessionIdError: blank session id.
            PaymentNotCompletedError: session not paid yet (retry later).
            InvalidSessionMetadataError: plan or account in metadata is wrong.
            UpstreamGatewayError: Stripe call failed or timed out.
        """
        session_id = (session_id or "").strip()
        if not session_id:
            raise MissingSessionIdError()
        gateway = self._require_gateway()

        async with self._locks[account_id]:
            record = await self.repository.get_record(account_id)

            # A recorded session is never applied twice, whatever the cached status is now.
            if record is not None and record.last_payment_session_id == session_id:
                logger.info(
                    "subscription_confirm_already_applied",
                    account_id=account_id,
                    session_id=session_id,
                    cached_status=record.status.value if record.status else None,
                )
                return ConfirmationResult(subscription=record, already_confirmed=True)

            snapshot = await gateway.retrieve_checkout_session(session_id)

            if snapshot.payment_status != PAID_PAYMENT_STATUS:
                logger.info(
                    "subscription_payment_pending",
                    account_id=account_id,
                    session_id=session_id,
                    payment_status=snapshot.payment_status,
                )
                raise PaymentNotCompletedError()

            raw_plan = str(snapshot.metadata.get("plan") or "").strip().lower()
            if raw_plan not in {plan.value for plan in PAID_PLANS}:
                logger.warning(
                    "subscription_session_metadata_invalid",
                    account_id=account_id,
                    session_id=session_id,
                    plan=raw_plan,
                )
                raise InvalidSessionMetadataError()

            session_account = snapshot.metadata.get("account_id")
            if session_account is not None and str(session_account) != account_id:
                logger.warning(
                    "subscription_session_account_mismatch",
                    account_id=account_id,
                    session_id=session_id,
                    session_account_id=str(session_account),
                )
                raise InvalidSessionMetadataError("Checkout session belongs to another account.")

            plan = SubscriptionPlan(raw_plan)
            now = self.now_provider()
            period_ends_at = now + PLAN_PERIODS[plan]

            amount = None
            currency = snapshot.currency.lower() if snapshot.currency else None
            if snapshot.amount_total is not None:
                amount = from_minor_units(snapshot.amount_total, currency or self.config.charge_currency)

            patch = {
                "plan": plan,
                "period_ends_at": period_ends_at,
                "grace_ends_at": self._grace_end(period_ends_at),
                "status": SubscriptionStatus.ACTIVE,
                "locked": False,
                "reason": REASON_PAYMENT_CONFIRMED,
                "last_payment_session_id": snapshot.session_id or session_id,
                "last_payment_at": now,
                "last_payment_amount": amount,
                "last_payment_currency": currency,
                "hosted_invoice_url": snapshot.hosted_invoice_url,
                "invoice_pdf": snapshot.invoice_pdf,
                "receipt_url": snapshot.receipt_url,
            }
            if record is None:
                # Paid before ever querying status: the trial dates still get recorded.
                await self._load_or_create_record(account_id)
            record = await self.repository.upsert_record(account_id, patch)
            logger.info(
                "subscription_confirmed",
                account_id=account_id,
                session_id=session_id,
                plan=plan.value,
                period_ends_at=period_ends_at.isoformat(),
            )
            return ConfirmationResult(subscription=record)

    async def list_subscriptions(self, role: str | None) -> SubscriptionReport:
        """Admin report of every record, joined with account identity."""
        if not is_admin(role):
            raise AdminRequiredError()

        records = await self.repository.list_records()
        profiles = {}
        if self.directory is not None:
            profiles = await self.directory.get_profiles([r.account_id for r in records])

        now = self.now_provider()
        rows = []
        for record in records:
            decision = evaluate_status(now, record)
            profile = profiles.get(record.account_id)
            rows.append(
                SubscriptionReportRow(
                    account_id=record.account_id,
                    email=profile.email if profile else None,
                    name=profile.display_name if profile else None,
                    status=decision.status,
                    locked=decision.locked,
                    plan=record.plan,
                    period_ends_at=record.period_ends_at,
                    last_payment_at=record.last_payment_at,
                    last_payment_amount=record.last_payment_amount,
                    last_payment_currency=record.last_payment_currency,
                    hosted_invoice_url=record.hosted_invoice_url,
                    invoice_pdf=record.invoice_pdf,
                    receipt_url=record.receipt_url,
                )
            )
        return SubscriptionReport(count=len(rows), rows=rows)
