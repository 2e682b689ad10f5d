import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from eduadmin.config import settings
from eduadmin.database import create_tables, engine
from eduadmin.middleware.logging_config import configure_logging

configure_logging(settings.log_level, json_output=settings.log_json)

from eduadmin.api.admin_claims import router as admin_claims_router  # noqa: E402
from eduadmin.api.auth import router as auth_router  # noqa: E402
from eduadmin.api.dashboard import router as dashboard_router  # noqa: E402
from eduadmin.api.deps import GateHidden, GatePending, GateRedirect  # noqa: E402
from eduadmin.api.role_perms import router as role_perms_router  # noqa: E402
from eduadmin.api.roles import router as roles_router  # noqa: E402
from eduadmin.auth.roles import RoleNotFoundError  # noqa: E402
from eduadmin.middleware.delete_guard import OwnerDeleteGuardMiddleware  # noqa: E402
from eduadmin.middleware.metrics import PrometheusMiddleware  # noqa: E402
from eduadmin.middleware.rate_limit import RateLimitMiddleware  # noqa: E402
from eduadmin.middleware.request_context import RequestContextMiddleware  # noqa: E402
from eduadmin.middleware.security_headers import SecurityHeadersMiddleware  # noqa: E402
from eduadmin.state import build_state  # noqa: E402

logger = logging.getLogger("eduadmin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    yield
    await app.state.rbac.aclose()
    await engine.dispose()


app = FastAPI(
    title="EduAdmin",
    description="Institute administration dashboard: roles, permissions and access control",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.rbac = build_state()

# ── Middleware (last added runs first) ───────────────────────────────────────
app.add_middleware(OwnerDeleteGuardMiddleware)

origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID", "X-Admin-Token"],
)

app.add_middleware(SecurityHeadersMiddleware)

if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        redis_url=settings.redis_url,
        limit=settings.rate_limit_per_minute,
    )

app.add_middleware(RequestContextMiddleware)
app.add_middleware(PrometheusMiddleware)


# ── Gate outcomes and errors ─────────────────────────────────────────────────

@app.exception_handler(GateRedirect)
async def gate_redirect_handler(request: Request, exc: GateRedirect):
    return RedirectResponse(exc.location, status_code=307)


@app.exception_handler(GateHidden)
async def gate_hidden_handler(request: Request, exc: GateHidden):
    return Response(status_code=204)


@app.exception_handler(GatePending)
async def gate_pending_handler(request: Request, exc: GatePending):
    return JSONResponse(
        status_code=503,
        content={"detail": "Permissions are still loading"},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(RoleNotFoundError)
async def role_not_found_handler(request: Request, exc: RoleNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    detail = f"{type(exc).__name__}: {exc}"
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": detail, "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(dashboard_router)
app.include_router(roles_router)
app.include_router(role_perms_router)
app.include_router(admin_claims_router)


@app.get("/metrics", tags=["metrics"])
async def prometheus_metrics():
    """Prometheus text exposition."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ── Health check ─────────────────────────────────────────────────────────────

_infra_cache: dict = {}
_infra_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


async def _infra_components() -> dict:
    """Database and redis probes, cached for HEALTH_CACHE_TTL."""
    global _infra_cache, _infra_cache_ts

    now = time.time()
    if _infra_cache and (now - _infra_cache_ts) < HEALTH_CACHE_TTL:
        return dict(_infra_cache)

    components: dict = {}

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    if settings.rate_limit_enabled:
        try:
            r = aioredis.from_url(settings.redis_url, decode_responses=True)
            await r.ping()
            await r.aclose()
            components["redis"] = {"status": "connected"}
        except Exception as exc:
            components["redis"] = {"status": "disconnected", "error": str(exc)}

    _infra_cache = components
    _infra_cache_ts = now
    return dict(components)


@app.get("/api/health")
async def health_check(request: Request):
    components = await _infra_components()

    # not cached: follows app.state.rbac
    state = request.app.state.rbac
    roles = state.registry.list_roles()
    components["roles"] = {
        "status": "loaded",
        "count": len(roles),
        "local_overrides": sum(1 for r in roles if state.storage.has_role_override(r.id)),
    }

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components.get("redis", {"status": "connected"})["status"] == "connected"

    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "degraded"

    return {
        "status": overall,
        "environment": settings.environment,
        "components": components,
    }
