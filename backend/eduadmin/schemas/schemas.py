"""
Pydantic schemas for API request/response models.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from eduadmin.auth.permissions import Action, Module


# ── Pagination ──

class PaginatedResponse(BaseModel):
    total: int
    page: int
    size: int
    pages: int


# ── Session ──

class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    next: str | None = None


class NavEntry(BaseModel):
    path: str
    label: str
    module: str | None = None


class SessionResponse(BaseModel):
    email: str
    uid: str
    role: str | None
    app_role_id: str | None
    resolved: bool
    permission_source: str | None = None
    permissions: dict[str, dict[str, bool]] | None = None
    navigation: list[NavEntry] = []


class LoginResponse(BaseModel):
    redirect: str
    id_token: str
    user: SessionResponse


# ── Remote role store ──

class RolePermsWrite(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role_id: str | None = Field(None, alias="roleId")
    permissions: Any = None


class RoleClaimItem(BaseModel):
    email: str | None = None
    role: str | None = None


# ── Roles & permissions editor ──

class RoleSummary(BaseModel):
    id: str
    name: str
    description: str
    dashboard: str
    has_local_override: bool = False
    permissions: dict[str, dict[str, bool]]


class EditorState(BaseModel):
    selected_role_id: str | None
    working: dict[str, dict[str, bool]] | None
    dirty: bool
    roles: list[RoleSummary]


class SelectRoleRequest(BaseModel):
    role_id: str


class ToggleRequest(BaseModel):
    module: Module
    action: Action


class BulkSetRequest(BaseModel):
    value: bool


class AdminTokenRequest(BaseModel):
    token: str


class SaveResponse(BaseModel):
    ok: bool = True
    role_id: str
    remote_synced: bool
    warning: str | None = None
    audit_event_id: str


class StaffUser(BaseModel):
    id: str
    name: str
    email: str
    campus: str | None = None
    role_id: str


class AssignRoleRequest(BaseModel):
    role_id: str


class AssignRoleResponse(BaseModel):
    ok: bool
    user: StaffUser
    applied_claim: str | None = None
    error: str | None = None


# ── Audit ──

class AuditEntry(BaseModel):
    id: int
    event_id: str
    event_type: str
    timestamp: datetime | None = None
    user: str
    action: str
    details: str | None = None


class AuditListResponse(PaginatedResponse):
    items: list[AuditEntry]


class IntegrityCheckResponse(BaseModel):
    valid: bool
    entries_checked: int
    first_invalid: str | None = None
    reason: str | None = None
