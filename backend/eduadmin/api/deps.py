"""
API Dependencies — DB session, auth session, gate guards.

Dashboard sessions are cookie based. `get_auth_session`:
  1. Reads the session id from the session cookie
  2. Looks up the AuthSession
  3. Forces a token refresh when the token is old or the account's claims
     changed, which re-resolves effective permissions

Guards translate gate decisions into HTTP:
  login redirect   307 -> /login?next=<requested location>
  redirect         307 -> location
  hide             204, empty body
  pending          503, Retry-After: 1
"""

import logging
from typing import AsyncGenerator
from urllib.parse import urlencode

from fastapi import Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from eduadmin.database import async_session
from eduadmin.auth.context import AuthSession
from eduadmin.auth.gates import (
    DEFAULT_DASHBOARD, GateDecision, Hide, Pending, Redirect, RedirectPolicy, RedirectToLogin,
    capability_gate, identity_gate,
)
from eduadmin.auth.permissions import Action, Module
from eduadmin.auth.resolver import resolve_identity
from eduadmin.middleware.request_context import set_actor
from eduadmin.state import AppState

logger = logging.getLogger(__name__)


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Application state & auth session ─────────────────────────────────────────

def get_state(request: Request) -> AppState:
    return request.app.state.rbac


async def get_auth_session(request: Request, state: AppState = Depends(get_state)) -> AuthSession | None:
    """The caller's AuthSession, or None when not signed in."""
    session = state.sessions.get(request.cookies.get(state.settings.session_cookie_name))
    if session is None:
        return None
    set_actor(session.principal.email)
    if session.needs_refresh():
        await session.refresh_token()
    return session


# ── Gate outcomes ────────────────────────────────────────────────────────────

class GateRedirect(Exception):
    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


class GateHidden(Exception):
    pass


class GatePending(Exception):
    pass


def _requested_location(request: Request) -> str:
    if request.url.query:
        return f"{request.url.path}?{request.url.query}"
    return request.url.path


def enforce(decision: GateDecision, state: AppState) -> None:
    """Raise the HTTP outcome for a non-allow decision."""
    if decision.allowed:
        return
    if isinstance(decision, RedirectToLogin):
        raise GateRedirect(f"{state.settings.login_path}?{urlencode({'next': decision.next})}")
    if isinstance(decision, Redirect):
        raise GateRedirect(decision.location)
    if isinstance(decision, Hide):
        raise GateHidden()
    if isinstance(decision, Pending):
        raise GatePending()
    raise GateHidden()


# ── Guards ───────────────────────────────────────────────────────────────────

def require_auth(*allowed_roles: str):
    """
    Identity gate as a FastAPI dependency.

    Usage:
        @router.get("/dashboard/accounts")
        async def accounts(session: AuthSession = Depends(require_auth("owner"))):
            ...
    """
    async def _check(
        request: Request,
        session: AuthSession | None = Depends(get_auth_session),
        state: AppState = Depends(get_state),
    ) -> AuthSession:
        decision = identity_gate(
            session, allowed_roles, location=_requested_location(request), cfg=state.settings,
        )
        enforce(decision, state)
        return session
    return _check


def require_permission(
    module: Module,
    action: Action = Action.VIEW,
    redirect_to: RedirectPolicy = DEFAULT_DASHBOARD,
):
    """
    Capability gate as a FastAPI dependency.

    redirect_to: a path to redirect to, None to render nothing, or the
    default dashboard when omitted.
    """
    async def _check(
        request: Request,
        session: AuthSession | None = Depends(get_auth_session),
        state: AppState = Depends(get_state),
    ) -> AuthSession:
        decision = capability_gate(
            session, module, action,
            redirect_to=redirect_to, location=_requested_location(request), cfg=state.settings,
        )
        enforce(decision, state)
        return session
    return _check


# ── Bearer id tokens (server-side admin endpoints) ──────────────────────────

def bearer_identity(request: Request, state: AppState) -> tuple[dict, str | None]:
    """
    Verify the bearer id token and return (claims, resolved coarse role).

    Raises 401 for a missing or invalid token.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = auth_header[7:]  # strip "Bearer "
    try:
        claims = state.identity.verify_id_token(token)
    except JWTError as e:
        logger.debug("Id token verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token")

    role, _ = resolve_identity(claims, claims.get("email"), state.settings)
    return claims, role
