"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes application-level
counters for permission resolution, gate decisions, and remote store health.
"""

import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── RBAC metrics ─────────────────────────────────────────────────────────────

permission_resolutions_total = Counter(
    "permission_resolutions_total",
    "Effective permission resolutions by winning source",
    ["source"],
)

gate_decisions_total = Counter(
    "gate_decisions_total",
    "Authorization gate outcomes",
    ["gate", "outcome"],
)

remote_override_failures_total = Counter(
    "remote_override_failures_total",
    "Failed calls to the remote role-permissions store",
    ["operation"],
)


def _normalize_path(path: str) -> str:
    """Collapse path parameters to reduce cardinality.

    e.g. /api/role-perms/role-frontdesk → /api/role-perms/{id}
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (
            part.startswith("role-")
            or part.startswith("u-")
            or (part.startswith("u") and part[1:].isdigit())
            or part.isdigit()
            or len(part) > 20
        ):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(
            method=method,
            path=path,
            status_code=response.status_code,
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            path=path,
        ).observe(duration)

        return response
