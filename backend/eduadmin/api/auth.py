"""Session API — login (with sign-up fallback), logout, forced refresh, profile."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from eduadmin.api.deps import get_auth_session, get_state
from eduadmin.auth.context import AuthSession
from eduadmin.auth.identity import IdentityError, UserNotFoundError
from eduadmin.auth.navigation import visible_nav
from eduadmin.schemas.schemas import LoginRequest, LoginResponse, NavEntry, SessionResponse
from eduadmin.state import AppState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ── Helpers ───────────────────────────────────────────────────────────────────

def session_to_response(session: AuthSession) -> SessionResponse:
    perms = session.permissions
    return SessionResponse(
        email=session.principal.email,
        uid=session.principal.uid,
        role=session.role,
        app_role_id=session.app_role_id,
        resolved=session.is_resolved,
        permission_source=session.permission_source,
        permissions=perms.to_payload() if perms is not None else None,
        navigation=[
            NavEntry(path=n.path, label=n.label, module=n.module.value if n.module else None)
            for n in visible_nav(session)
        ],
    )


def _safe_next(target: str | None, default: str) -> str:
    """Only same-site relative paths are honoured as post-login targets."""
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return default


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, request: Request, response: Response, state: AppState = Depends(get_state)):
    """Sign in; an unknown email is signed up on the spot. Any previous session on this cookie is dropped."""
    try:
        principal = state.identity.sign_in(body.email, body.password)
    except UserNotFoundError:
        try:
            principal = state.identity.sign_up(body.email, body.password)
        except IdentityError as e:
            raise HTTPException(status_code=400, detail=f"Sign up failed: {e}")
    except IdentityError as e:
        raise HTTPException(status_code=401, detail=f"Sign in failed: {e}")

    previous = request.cookies.get(state.settings.session_cookie_name)
    session = state.sessions.create(principal, replaces=previous)
    await session.refresh_token()

    response.set_cookie(
        state.settings.session_cookie_name,
        session.id,
        max_age=state.sessions.max_age_seconds,
        httponly=True,
        samesite="lax",
        secure=state.settings.environment == "production",
    )
    logger.info("Login: %s (%s / %s)", principal.email, session.role, session.app_role_id)

    return LoginResponse(
        redirect=_safe_next(body.next, state.settings.default_dashboard_path),
        id_token=session.id_token,
        user=session_to_response(session),
    )


@router.post("/logout")
async def logout(request: Request, response: Response, state: AppState = Depends(get_state)):
    session_id = request.cookies.get(state.settings.session_cookie_name)
    if session_id:
        await state.sessions.destroy(session_id)
    response.delete_cookie(state.settings.session_cookie_name)
    return {"ok": True, "redirect": state.settings.login_path}


@router.post("/refresh")
async def refresh(session: AuthSession | None = Depends(get_auth_session)):
    """Force a new id token and re-resolve permissions."""
    if session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    await session.refresh_token()
    return {"id_token": session.id_token, "user": session_to_response(session)}


@router.get("/me", response_model=SessionResponse)
async def me(session: AuthSession | None = Depends(get_auth_session)):
    if session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return session_to_response(session)
