"""
Business logic constants for the subscription service.

These values are stable across environments (dev/staging/prod) and do not
need env-var overrides. For tunables that vary per deployment (trial length,
prices, currencies), see config.py.
"""

API_TITLE = "INTERMID Subscription API"
API_VERSION = "0.1.0"

ADMIN_ROLE = "admin"

# Stripe payment_status value for a settled checkout session
PAID_PAYMENT_STATUS = "paid"

# --- Status reasons shown to the user ---
REASON_ADMIN_BYPASS = "Admin bypass (not blocked)."
REASON_PAID_ACTIVE = "Subscription active."
REASON_PAID_GRACE = "Payment due. Grace period running."
REASON_PAID_LOCKED = "Subscription expired. Please pay to continue."
REASON_TRIAL_ACTIVE = "Trial active."
REASON_TRIAL_GRACE = "Trial ended. Please pay during grace period."
REASON_TRIAL_LOCKED = "Trial ended. Please subscribe to continue."
REASON_PAYMENT_CONFIRMED = "Payment confirmed."

# --- Currency minor units ---
# Stripe amounts are integers in the currency's smallest unit. Anything not
# listed here has two decimal places.
ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
        "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    }
)
THREE_DECIMAL_CURRENCIES: frozenset[str] = frozenset({"bhd", "jod", "kwd", "omr", "tnd"})
