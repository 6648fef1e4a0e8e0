"""
Shared test fixtures for the subscription backend test suite.
"""

import pytest
import structlog
from fastapi.testclient import TestClient


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests independent of any local .env configuration."""
    monkeypatch.setenv("STORE__BACKEND", "memory")
    monkeypatch.setenv("STRIPE__SECRET_KEY", "")
    monkeypatch.setenv("SUPABASE_URL", "")


@pytest.fixture(autouse=True)
def _configure_structlog_for_tests():
    """Configure structlog for tests using a simple, deterministic setup."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(0),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def client() -> TestClient:
    """FastAPI TestClient wrapping the main application."""
    # Clear the lru_cache so settings pick up test env vars
    from subscriptions.config import get_settings

    get_settings.cache_clear()

    from subscriptions.main import app

    return TestClient(app)
