"""
Request context middleware.

Propagates X-Request-ID and keeps the request id and the signed-in actor in
ContextVars, so log lines written anywhere during a request can name both.
"""

import time
import logging
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_actor_var: ContextVar[str] = ContextVar("actor", default="")


def get_request_id() -> str:
    return _request_id_var.get()


def get_actor() -> str:
    """Email of the signed-in user for the current request, or ''."""
    return _actor_var.get()


def set_actor(email: str | None) -> None:
    _actor_var.set(email or "")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        rid_token = _request_id_var.set(request_id)
        actor_token = _actor_var.set("")

        start_time = time.time()
        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            _request_id_var.reset(rid_token)
            _actor_var.reset(actor_token)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "%s %s %s %.0fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={"duration_ms": duration_ms, "request_id": request_id},
        )

        return response
