"""
Owner-only DELETE guard.

Every DELETE under /api/ needs a bearer id token whose resolved coarse role
is owner. Anything else is refused before the route runs.
"""

import logging

from fastapi import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from eduadmin.api.deps import bearer_identity
from eduadmin.auth.roles import CoarseRole

logger = logging.getLogger(__name__)


class OwnerDeleteGuardMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.method != "DELETE" or not request.url.path.startswith("/api/"):
            return await call_next(request)

        try:
            claims, role = bearer_identity(request, request.app.state.rbac)
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        if role != CoarseRole.OWNER.value:
            logger.warning("DELETE %s refused for %s (%s)", request.url.path, claims.get("email"), role)
            return JSONResponse(status_code=403, content={"detail": "Forbidden"})

        return await call_next(request)
