"""
Entitlement status engine.

Derives ``{status, locked, reason}`` from a subscription record, the
current time, and the caller's role. Every caller (status query,
confirmation, admin report, route guard) goes through ``evaluate_status``;
nothing else branches on record timestamps.

Windows are half-open: a window that ends exactly at ``now`` has expired.
"""

from datetime import datetime

from subscriptions.constants import (
    ADMIN_ROLE,
    REASON_ADMIN_BYPASS,
    REASON_PAID_ACTIVE,
    REASON_PAID_GRACE,
    REASON_PAID_LOCKED,
    REASON_TRIAL_ACTIVE,
    REASON_TRIAL_GRACE,
    REASON_TRIAL_LOCKED,
)
from subscriptions.models.subscription import (
    PAID_PLANS,
    StatusDecision,
    SubscriptionRecord,
    SubscriptionStatus,
)


def is_admin(role: str | None) -> bool:
    return (role or "").strip().lower() == ADMIN_ROLE


def _ends_after(moment: datetime | None, now: datetime) -> bool:
    return moment is not None and moment > now


def evaluate_status(
    now: datetime, record: SubscriptionRecord, role: str | None = None
) -> StatusDecision:
    """
    Compute the entitlement status of ``record`` at ``now``.

    Args:
        now: Current time (timezone-aware).
        record: The account's subscription record.
        role: Role supplied by the auth layer. ``admin`` always gets access.

    Returns:
        StatusDecision; ``locked`` is the only field access checks should use.
    """
    if is_admin(role):
        return StatusDecision(
            status=SubscriptionStatus.ACTIVE, locked=False, reason=REASON_ADMIN_BYPASS
        )

    if record.plan in PAID_PLANS:
        if _ends_after(record.period_ends_at, now):
            return StatusDecision(
                status=SubscriptionStatus.ACTIVE, locked=False, reason=REASON_PAID_ACTIVE
            )
        if _ends_after(record.grace_ends_at, now):
            return StatusDecision(
                status=SubscriptionStatus.PAST_DUE, locked=False, reason=REASON_PAID_GRACE
            )
        return StatusDecision(
            status=SubscriptionStatus.LOCKED, locked=True, reason=REASON_PAID_LOCKED
        )

    if _ends_after(record.trial_ends_at, now):
        return StatusDecision(
            status=SubscriptionStatus.TRIAL, locked=False, reason=REASON_TRIAL_ACTIVE
        )
    if _ends_after(record.grace_ends_at, now):
        return StatusDecision(
            status=SubscriptionStatus.PAST_DUE, locked=False, reason=REASON_TRIAL_GRACE
        )
    return StatusDecision(
        status=SubscriptionStatus.LOCKED, locked=True, reason=REASON_TRIAL_LOCKED
    )


def is_access_allowed(decision: StatusDecision) -> bool:
    """Capability checks deny only when the entitlement is locked."""
    return not decision.locked
