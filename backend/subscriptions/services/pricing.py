"""Plan pricing: displayed list price and the amount charged through Stripe."""

from decimal import ROUND_HALF_UP, Decimal

from subscriptions.config import SubscriptionConfig
from subscriptions.constants import THREE_DECIMAL_CURRENCIES, ZERO_DECIMAL_CURRENCIES
from subscriptions.errors import InvalidPlanError
from subscriptions.models.subscription import PAID_PLANS, PlanQuote, SubscriptionPlan


def parse_paid_plan(value: str | SubscriptionPlan | None) -> SubscriptionPlan:
    """Normalize a requested plan, rejecting anything that is not monthly/yearly."""
    raw = value.value if isinstance(value, SubscriptionPlan) else str(value or "")
    try:
        plan = SubscriptionPlan(raw.strip().lower())
    except ValueError:
        raise InvalidPlanError() from None
    if plan not in PAID_PLANS:
        raise InvalidPlanError()
    return plan


def currency_exponent(currency: str) -> int:
    code = currency.lower()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def to_minor_units(amount: Decimal, currency: str) -> int:
    scale = Decimal(10) ** currency_exponent(currency)
    return int((amount * scale).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(unit_amount: int, currency: str) -> Decimal:
    scale = Decimal(10) ** currency_exponent(currency)
    return Decimal(unit_amount) / scale


def display_price(plan: SubscriptionPlan, config: SubscriptionConfig) -> Decimal:
    return config.yearly_price if plan == SubscriptionPlan.YEARLY else config.monthly_price


def charge_amount(plan: SubscriptionPlan, config: SubscriptionConfig) -> Decimal:
    override = (
        config.yearly_charge_override
        if plan == SubscriptionPlan.YEARLY
        else config.monthly_charge_override
    )
    if override is not None:
        return override
    return display_price(plan, config) * config.conversion_rate


def quote_plan(plan: SubscriptionPlan, config: SubscriptionConfig) -> PlanQuote:
    """
    Price a paid plan.

    The charge is the fixed per-plan override when configured, otherwise the
    display price converted at ``conversion_rate``. ``unit_amount`` is the
    charge in the settlement currency's smallest unit, rounded half-up.
    """
    plan = parse_paid_plan(plan)
    charge = charge_amount(plan, config)
    return PlanQuote(
        plan=plan,
        display_amount=display_price(plan, config),
        display_currency=config.display_currency.lower(),
        charge_amount=charge,
        charge_currency=config.charge_currency.lower(),
        unit_amount=to_minor_units(charge, config.charge_currency),
    )
