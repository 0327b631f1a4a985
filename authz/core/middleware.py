"""CORS and request-context middleware.

Every request gets a request id (reused from ``X-Request-Id`` when the caller
sends one). It is held in a context variable so permission gates can attach
it to security events, and a logging filter stamps it on log records.
"""

import logging
import time
import uuid
from contextvars import ContextVar

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from authz.core.config import settings

logger = logging.getLogger("authz")

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


def get_request_id() -> str:
    """Request id of the request being handled, or "-" outside a request."""
    return request_id_var.get()


class RequestIdFilter(logging.Filter):
    """Adds ``request_id`` to every record passing through the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id propagation plus one access line naming the resolved principal."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start_time = time.time()

        try:
            response: Response = await call_next(request)

            duration = round((time.time() - start_time) * 1000, 2)
            response.headers["X-Request-Id"] = request_id
            response.headers["X-Response-Time-Ms"] = str(duration)

            logger.info(
                "%s %s %s %sms principal=%s",
                request.method,
                request.url.path,
                response.status_code,
                duration,
                getattr(request.state, "principal", None) or "-",
            )
            return response
        finally:
            request_id_var.reset(token)


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the application."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestContextMiddleware)
