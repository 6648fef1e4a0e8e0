"""
Authentication dependency for FastAPI endpoints.

Provides JWT verification via Supabase auth.get_user() and a FastAPI
dependency that can be used to protect endpoints. The role comes from the
user's app_metadata, which only the service role can write.
"""

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from subscriptions.errors import NotAuthenticatedError

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

DEFAULT_ROLE = "staff"


class AuthenticatedUser(BaseModel):
    """Represents a verified authenticated user."""

    id: str
    email: str | None = None
    role: str = DEFAULT_ROLE


def _role_from_user(user) -> str:
    app_metadata = getattr(user, "app_metadata", None) or {}
    role = app_metadata.get("role") if isinstance(app_metadata, dict) else None
    return str(role).lower() if role else DEFAULT_ROLE


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """
    FastAPI dependency that verifies a JWT Bearer token via Supabase.

    Raises:
        HTTPException 503: Supabase client not configured.
        NotAuthenticatedError: Token is missing, invalid, expired, or user not found.
    """
    supabase = getattr(request.app.state, "supabase", None)
    if supabase is None:
        raise HTTPException(status_code=503, detail="Authentication service unavailable")

    if credentials is None or not credentials.credentials:
        raise NotAuthenticatedError("Missing token")

    token = credentials.credentials
    try:
        response = await supabase.auth.get_user(token)
    except Exception as e:
        logger.warning("auth_token_verification_failed", error=str(e))
        raise NotAuthenticatedError() from e

    user = response.user if response else None
    if user is None:
        raise NotAuthenticatedError()

    authenticated = AuthenticatedUser(
        id=str(user.id), email=user.email, role=_role_from_user(user)
    )
    structlog.contextvars.bind_contextvars(account_id=authenticated.id)
    return authenticated


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
