"""Request context middleware for structured logging."""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"


def _request_id_from(request: Request) -> str:
    """Reuse a caller-supplied UUID request id, otherwise mint one."""
    incoming = request.headers.get(REQUEST_ID_HEADER, "")
    try:
        return str(uuid.UUID(incoming))
    except ValueError:
        return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds per-request log context and echoes X-Request-ID.

    Stripe's return page carries ``?session_id=cs_...``; when present it is
    bound as ``checkout_session_id`` so the confirm call can be traced back to
    the checkout. ``account_id`` is bound later by the auth dependency.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _request_id_from(request)
        structlog.contextvars.clear_contextvars()
        context = {"request_id": request_id, "method": request.method, "path": request.url.path}
        checkout_session_id = request.query_params.get("session_id")
        if checkout_session_id:
            context["checkout_session_id"] = checkout_session_id
        structlog.contextvars.bind_contextvars(**context)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        structlog.contextvars.clear_contextvars()
        return response
