"""
Authorization gates — decide whether a protected view may render.

Identity gate    authenticated + optional coarse-role allow-list
Capability gate  authenticated + one (module, action) check, owner bypass

Both return a GateDecision and never raise. Anything that is not a clear
"yes" is a denial: no session, unresolved permissions, unknown module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from eduadmin.auth.context import AuthSession, Owner, Scoped
from eduadmin.auth.permissions import Action, Module, get_action
from eduadmin.config import Settings, settings as default_settings
from eduadmin.middleware.metrics import gate_decisions_total


class GateDecision:
    outcome = "allow"

    @property
    def allowed(self) -> bool:
        return isinstance(self, Allow)


@dataclass(frozen=True)
class Allow(GateDecision):
    outcome = "allow"


@dataclass(frozen=True)
class RedirectToLogin(GateDecision):
    next: str
    outcome = "login"


@dataclass(frozen=True)
class Redirect(GateDecision):
    location: str
    outcome = "redirect"


@dataclass(frozen=True)
class Hide(GateDecision):
    outcome = "hide"


@dataclass(frozen=True)
class Pending(GateDecision):
    outcome = "pending"


class _DefaultDashboard:
    def __repr__(self) -> str:
        return "DEFAULT_DASHBOARD"


# redirect_to policy: a path, None (render nothing), or the default dashboard
DEFAULT_DASHBOARD = _DefaultDashboard()

RedirectPolicy = str | None | _DefaultDashboard


def _record(gate: str, decision: GateDecision) -> GateDecision:
    gate_decisions_total.labels(gate=gate, outcome=decision.outcome).inc()
    return decision


def identity_gate(
    session: AuthSession | None,
    allowed_roles: Iterable[str] | None = None,
    *,
    location: str = "/",
    cfg: Settings | None = None,
) -> GateDecision:
    cfg = cfg or default_settings
    if session is None:
        return _record("identity", RedirectToLogin(location))

    roles = list(allowed_roles or [])
    if roles and (session.role or "") not in roles:
        return _record("identity", Redirect(cfg.default_dashboard_path))
    return _record("identity", Allow())


def capability_gate(
    session: AuthSession | None,
    module: Module | str,
    action: Action | str = Action.VIEW,
    *,
    redirect_to: RedirectPolicy = DEFAULT_DASHBOARD,
    location: str = "/",
    cfg: Settings | None = None,
) -> GateDecision:
    cfg = cfg or default_settings
    if session is None:
        return _record("capability", RedirectToLogin(location))

    authority = session.authority
    if isinstance(authority, Owner):
        return _record("capability", Allow())
    if not isinstance(authority, Scoped):
        return _record("capability", Pending())

    if get_action(authority.permissions, module, action):
        return _record("capability", Allow())

    if redirect_to is None:
        return _record("capability", Hide())
    if isinstance(redirect_to, _DefaultDashboard):
        return _record("capability", Redirect(cfg.default_dashboard_path))
    return _record("capability", Redirect(redirect_to))
