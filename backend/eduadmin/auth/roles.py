"""
Role definitions and the role registry.

Two independent notions of "role" exist:

    CoarseRole   owner | limited, carried as the `role` claim on the id token
    Role         a fine-grained permission bundle, referenced by `appRoleId`

The owner coarse role bypasses every capability check. That bypass lives in
the authorization gate, never in a Role's permissions: an all-true grant can
be overridden by a stored override, the owner bypass cannot.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum

from eduadmin.auth.permissions import Action, Module, RolePermissions, clone_permissions


class CoarseRole(str, Enum):
    OWNER = "owner"
    LIMITED = "limited"


class RoleNotFoundError(LookupError):
    def __init__(self, role_id: str):
        super().__init__(f"Role {role_id} not found")
        self.role_id = role_id


@dataclass(frozen=True)
class Role:
    id: str
    name: str
    description: str
    dashboard: str
    permissions: RolePermissions


_VIEW = (Action.VIEW,)
_NO_DELETE = (Action.VIEW, Action.ADD, Action.EDIT)
_MANAGE = tuple(Action)

# ── Front desk: student directory, read-only ──
_FRONTDESK_PERMS = {
    Module.STUDENTS: _VIEW,
}

# ── Admissions: enquiries through to enrolment, no deletes ──
_ADMISSIONS_PERMS = {
    Module.ENQUIRIES: _NO_DELETE,
    Module.ADMISSIONS: _NO_DELETE,
    Module.STUDENTS: _NO_DELETE,
}

# ── Campus head: students & courses, read-only finance ──
_CAMPUS_HEAD_PERMS = {
    Module.STUDENTS: _MANAGE,
    Module.COURSES: _MANAGE,
    Module.FEES: _VIEW,
    Module.REPORTS: _VIEW,
}


def seed_roles() -> list[Role]:
    """Fresh copies of the built-in roles, in display order."""
    return [
        Role(
            id="role-frontdesk",
            name="Front Desk Representative",
            description="View student attendance and basic info",
            dashboard="/dashboard/students",
            permissions=RolePermissions.from_grants(_FRONTDESK_PERMS),
        ),
        Role(
            id="role-admissions",
            name="Admissions Coordinator",
            description="Handle enquiries and new admissions; update status",
            dashboard="/dashboard/admissions",
            permissions=RolePermissions.from_grants(_ADMISSIONS_PERMS),
        ),
        Role(
            id="role-campus-head",
            name="Campus Head",
            description="Manage students & courses; limited finance reports",
            dashboard="/dashboard/reports",
            permissions=RolePermissions.from_grants(_CAMPUS_HEAD_PERMS),
        ),
        Role(
            id="role-admin",
            name="Admin",
            description="Super control",
            dashboard="/dashboard",
            permissions=RolePermissions.full(),
        ),
    ]


def claim_for_role_id(role_id: str) -> CoarseRole:
    """Map an appRoleId to the coarse claim written next to it on the token."""
    r = str(role_id).lower()
    if r in ("owner", "admin") or "role-owner" in r or "role-admin" in r:
        return CoarseRole.OWNER
    return CoarseRole.LIMITED


class RoleRegistry:
    """
    Process-wide catalog of roles and their baseline permissions.

    Only the permission editor writes here, through replace_permissions().
    A write swaps the whole Role object, so a reader sees either the old or
    the new permission matrix.
    """

    def __init__(self, roles: list[Role] | None = None):
        self._lock = threading.Lock()
        self._roles: dict[str, Role] = {
            r.id: r for r in (roles if roles is not None else seed_roles())
        }

    def list_roles(self) -> list[Role]:
        return list(self._roles.values())

    def find_role(self, role_id: str | None) -> Role | None:
        if not role_id:
            return None
        return self._roles.get(role_id)

    def get_role(self, role_id: str) -> Role:
        role = self.find_role(role_id)
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    def replace_permissions(self, role_id: str, permissions: RolePermissions) -> Role:
        updated_perms = clone_permissions(permissions)
        with self._lock:
            current = self._roles.get(role_id)
            if current is None:
                raise RoleNotFoundError(role_id)
            updated = replace(current, permissions=updated_perms)
            self._roles[role_id] = updated
        return updated
