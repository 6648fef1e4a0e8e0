"""structlog configuration module."""

import logging
import sys

import structlog

# Checkout client secrets and API keys must never reach the log stream.
REDACTED_KEYS = frozenset({"client_secret", "api_key", "secret_key", "token", "authorization"})
REDACTED = "***"


def redact_secrets(_logger, _method_name: str, event_dict: dict) -> dict:
    """structlog processor masking credential-like keys."""
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(debug: bool = False) -> None:
    """
    Configure structlog and stdlib logging.

    Debug mode renders colored console lines; otherwise JSON lines carrying
    request_id, account_id and checkout_session_id for correlating a
    checkout with its confirmation.

    Args:
        debug: If True, use ConsoleRenderer; otherwise use JSONRenderer.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if debug else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # Stripe's SDK logs through stdlib; keep it on stdout and out of INFO in production.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )
    logging.getLogger("stripe").setLevel(logging.INFO if debug else logging.WARNING)
