"""
Domain errors for the subscription service.

Each error carries the HTTP status it maps to and a public ``detail`` that
is safe to return to the caller. Internal detail (gateway messages, stack
traces) only goes to the server log.
"""


class SubscriptionError(Exception):
    """Base class for errors reported to the caller."""

    status_code: int = 400
    retryable: bool = False
    default_detail: str = "Subscription request failed."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(SubscriptionError):
    """Bad or missing input. Never retried automatically."""

    status_code = 400
    default_detail = "Invalid request."


class InvalidPlanError(ValidationError):
    default_detail = "Invalid plan. Use 'monthly' or 'yearly'."


class MissingSessionIdError(ValidationError):
    default_detail = "Missing session_id"


class NotAuthenticatedError(SubscriptionError):
    """No verified identity on the request."""

    status_code = 401
    default_detail = "Invalid token"


class SubscriptionLockedError(SubscriptionError):
    """The account's entitlement is locked."""

    status_code = 402
    default_detail = "Subscription required."


class AdminRequiredError(SubscriptionError):
    status_code = 403
    default_detail = "Admin only"


class PaymentNotCompletedError(SubscriptionError):
    """Checkout session exists but is not paid yet. Caller should re-check later."""

    status_code = 409
    retryable = True
    default_detail = "Payment not completed yet."


class InvalidSessionMetadataError(SubscriptionError):
    """Session was not created by this flow, or its metadata was altered."""

    status_code = 422
    default_detail = "Invalid plan in session metadata."


class UpstreamGatewayError(SubscriptionError):
    """The payment gateway call failed or timed out."""

    status_code = 502
    retryable = True
    default_detail = "Payment provider unavailable. Please try again."


class GatewayNotConfiguredError(SubscriptionError):
    status_code = 503
    default_detail = "Stripe not configured"


class StoreCorruptionError(Exception):
    """A persisted subscription record could not be parsed.

    Never reaches the caller: repositories treat the record as absent so the
    account gets a fresh trial record.
    """

    def __init__(self, account_id: str, reason: str) -> None:
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Corrupt subscription record for {account_id}: {reason}")
