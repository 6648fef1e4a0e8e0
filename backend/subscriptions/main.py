"""
INTERMID Subscription Backend - Main FastAPI Application.

Grants or denies feature access per account: trial, paid (monthly/yearly
through Stripe Checkout), grace period, locked.

Run with:
    uvicorn subscriptions.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from supabase import acreate_client
from supabase._async.client import AsyncClient as AsyncSupabaseClient

from subscriptions.api.v1.subscription import router as subscription_router
from subscriptions.config import Settings, get_settings
from subscriptions.constants import API_TITLE, API_VERSION
from subscriptions.errors import SubscriptionError
from subscriptions.logging_config import setup_logging
from subscriptions.middleware import RequestContextMiddleware
from subscriptions.services.stripe_service import StripeService
from subscriptions.services.subscription_service import SubscriptionService
from subscriptions.services.subscription_store import (
    AccountDirectory,
    InMemorySubscriptionRepository,
    JsonFileSubscriptionRepository,
    SubscriptionRepository,
    SupabaseAccountDirectory,
    SupabaseSubscriptionRepository,
)

# Get settings before logging setup so we know the debug flag
settings = get_settings()

# Configure logging
setup_logging(settings.debug)

logger = structlog.get_logger(__name__)


def build_repository(
    app_settings: Settings, supabase_client: AsyncSupabaseClient | None
) -> tuple[SubscriptionRepository, AccountDirectory | None]:
    """Pick the record store configured by STORE__BACKEND."""
    store = app_settings.store
    if store.backend == "supabase":
        if supabase_client is None:
            logger.warning(
                "subscription_store_fallback",
                detail="Supabase not configured, records kept in memory",
            )
            return InMemorySubscriptionRepository(), None
        return (
            SupabaseSubscriptionRepository(supabase_client, store.records_table),
            SupabaseAccountDirectory(supabase_client, store.profiles_table),
        )
    if store.backend == "json":
        logger.info("subscription_store_json", path=store.json_path)
        return JsonFileSubscriptionRepository(store.json_path), None

    logger.warning("subscription_store_memory", detail="Records are lost on restart")
    return InMemorySubscriptionRepository(), None


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan event handler for startup and shutdown."""
    logger.info("api_startup", cors_origins=settings.cors_origins)

    supabase_client: AsyncSupabaseClient | None = None
    if settings.supabase_url and settings.supabase_secret_key:
        try:
            supabase_client = await acreate_client(
                settings.supabase_url,
                settings.supabase_secret_key,
            )
            logger.info("supabase_configured")
        except Exception as e:
            logger.warning("supabase_init_failed", error=str(e))
    else:
        logger.warning("supabase_not_configured", detail="Auth endpoints will return 503")

    _app.state.supabase = supabase_client

    stripe_service: StripeService | None = None
    if settings.stripe.secret_key:
        stripe_service = StripeService(
            settings.stripe, product_name=settings.subscription.product_name
        )
        logger.info("stripe_configured")
    else:
        logger.warning("stripe_key_missing", detail="Checkout endpoints will return 503")

    repository, directory = build_repository(settings, supabase_client)
    _app.state.subscription_service = SubscriptionService(
        repository,
        settings.subscription,
        gateway=stripe_service,
        directory=directory,
    )

    logger.info(
        "services_initialized",
        trial_days=settings.subscription.trial_days,
        grace_days=settings.subscription.grace_days,
        store=settings.store.backend,
    )

    yield

    logger.info("api_shutdown")


# Create FastAPI app
app = FastAPI(
    title=API_TITLE,
    description=(
        "Subscription entitlements: trial, monthly and yearly plans paid through "
        "Stripe Checkout, grace period and account locking."
    ),
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Request context middleware must come before CORS so every response gets
# the X-Request-ID header (including preflight OPTIONS responses).
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SubscriptionError)
async def subscription_error_handler(request: Request, exc: SubscriptionError) -> JSONResponse:
    """Map domain errors to their HTTP status with a caller-safe message."""
    logger.info(
        "subscription_request_rejected",
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "retryable": exc.retryable},
    )


# Include routers
app.include_router(subscription_router, prefix="/api/v1")


@app.get("/")
async def root() -> dict:
    """Root endpoint with API info."""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "description": "Subscription entitlement API",
        "docs": "/docs",
    }


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}
