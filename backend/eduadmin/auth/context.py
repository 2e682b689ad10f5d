"""
AuthSession — "who is signed in, what coarse role, what can they do".

One AuthSession exists per signed-in browser session. It carries:
- principal: email + uid from the identity provider
- role: the coarse claim (owner | limited | None)
- app_role_id: the fine-grained Role.id the permissions come from
- permissions: the effective matrix, or None while it is being resolved

Effective permissions are recomputed on every id-token change (sign-in,
forced refresh, periodic refresh) and are never carried across a token.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from jose import JWTError

from eduadmin.auth.identity import IdentityProvider, Principal
from eduadmin.auth.permissions import Action, Module, RolePermissions, get_action
from eduadmin.auth.resolver import PermissionResolver, ResolvedPermissions, fallback_identity, resolve_identity
from eduadmin.auth.roles import CoarseRole
from eduadmin.config import Settings, settings as default_settings

if TYPE_CHECKING:
    from eduadmin.services.permission_editor import PermissionEditor

logger = logging.getLogger(__name__)


# ── Authority ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Owner:
    """Absolute bypass. Not a permission grant, so nothing can override it."""


@dataclass(frozen=True)
class Scoped:
    permissions: RolePermissions


@dataclass(frozen=True)
class Unresolved:
    """Authenticated, permissions still resolving. Denies everything."""


Authority = Owner | Scoped | Unresolved


# ── Session ──────────────────────────────────────────────────────────────────

class AuthSession:
    def __init__(
        self,
        principal: Principal,
        identity: IdentityProvider,
        resolver: PermissionResolver,
        cfg: Settings | None = None,
    ):
        self.id = secrets.token_urlsafe(32)
        self.principal = principal
        self.identity = identity
        self.resolver = resolver
        self.cfg = cfg or default_settings

        self.role: str | None = None
        self.app_role_id: str | None = None
        self.permissions: RolePermissions | None = None
        self.permission_source: str | None = None
        self.degraded = False

        self.created_at = time.time()
        self.id_token: str | None = None
        self.token_issued_at: float = 0.0
        self._generation = 0

        self.editor: PermissionEditor | None = None

    @property
    def is_owner(self) -> bool:
        return self.role == CoarseRole.OWNER.value

    @property
    def is_resolved(self) -> bool:
        return self.permissions is not None

    @property
    def authority(self) -> Authority:
        if self.is_owner:
            return Owner()
        if self.permissions is None:
            return Unresolved()
        return Scoped(self.permissions)

    @property
    def actor(self) -> str:
        """Identity string for audit logging."""
        return self.principal.email

    def can(self, module: Module | str, action: Action | str = Action.VIEW) -> bool:
        authority = self.authority
        if isinstance(authority, Owner):
            return True
        if isinstance(authority, Scoped):
            return get_action(authority.permissions, module, action)
        return False

    # ── Token lifecycle ──

    def needs_refresh(self, now: float | None = None) -> bool:
        if self.id_token is None:
            return True
        now = time.time() if now is None else now
        if now - self.token_issued_at >= self.cfg.token_refresh_seconds:
            return True
        return self.identity.claims_changed_since(self.principal.uid, self.token_issued_at)

    async def refresh_token(self) -> None:
        """Force a new id token from the provider and re-resolve permissions."""
        token = self.identity.get_id_token(self.principal.uid, force_refresh=True)
        self.id_token = token
        self.token_issued_at = time.time()
        await self.on_id_token_changed(token)

    async def on_id_token_changed(self, token: str | None) -> None:
        self._generation += 1
        generation = self._generation

        if token is None:
            self.role = None
            self.app_role_id = None
            self.permissions = None
            self.permission_source = None
            return

        try:
            claims = self.identity.verify_id_token(token)
        except JWTError as exc:
            logger.warning("Id token for %s unreadable (%s), using fallback identity", self.principal.email, exc)
            self.role, self.app_role_id = fallback_identity(self.principal.email, self.cfg)
            self._apply(generation, self.resolver.resolve_baseline(self.app_role_id), degraded=True)
            return

        role, app_role_id = resolve_identity(claims, self.principal.email, self.cfg)
        if app_role_id != self.app_role_id:
            self.permissions = None
        self.role = role
        self.app_role_id = app_role_id

        resolved = await self.resolver.resolve(app_role_id)
        self._apply(generation, resolved)

    def _apply(self, generation: int, resolved: ResolvedPermissions, degraded: bool = False) -> bool:
        if generation != self._generation or resolved.role_id != self.app_role_id:
            logger.debug("Discarding stale permission resolution for %s", resolved.role_id)
            return False
        self.permissions = resolved.permissions
        self.permission_source = resolved.source
        self.degraded = degraded
        return True


class SessionStore:
    """
    In-memory map of session id -> AuthSession.

    Sessions live for at most session_max_age_minutes from creation. Expired
    entries are dropped on lookup and swept whenever a new session is created.
    """

    def __init__(self, identity: IdentityProvider, resolver: PermissionResolver, cfg: Settings | None = None):
        self.identity = identity
        self.resolver = resolver
        self.cfg = cfg or default_settings
        self._sessions: dict[str, AuthSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def max_age_seconds(self) -> int:
        return self.cfg.session_max_age_minutes * 60

    def is_expired(self, session: AuthSession, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - session.created_at >= self.max_age_seconds

    def create(self, principal: Principal, replaces: str | None = None) -> AuthSession:
        """Start a session. `replaces` is the caller's previous session id, if any."""
        if replaces:
            self.discard(replaces)
        self.sweep()
        session = AuthSession(principal, self.identity, self.resolver, self.cfg)
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str | None, now: float | None = None) -> AuthSession | None:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is not None and self.is_expired(session, now):
            self.discard(session_id)
            logger.info("Session for %s expired", session.principal.email)
            return None
        return session

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def sweep(self, now: float | None = None) -> int:
        expired = [sid for sid, s in self._sessions.items() if self.is_expired(s, now)]
        for sid in expired:
            self._sessions.pop(sid, None)
        return len(expired)

    async def destroy(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            self.identity.sign_out(session.principal.uid)
            await session.on_id_token_changed(None)
