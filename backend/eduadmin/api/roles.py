"""
User Roles page — permission editor, role assignment, audit trail.

Owner-only (identity gate). The editor draft belongs to the operator's
session, so two owners editing at once each have their own working copy.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from eduadmin.api.deps import get_db, get_state, require_auth
from eduadmin.auth.context import AuthSession
from eduadmin.auth.roles import CoarseRole, Role, RoleNotFoundError
from eduadmin.schemas.schemas import (
    AdminTokenRequest, AssignRoleRequest, AssignRoleResponse, AuditEntry, AuditListResponse,
    BulkSetRequest, EditorState, IntegrityCheckResponse, RoleSummary, SaveResponse,
    SelectRoleRequest, StaffUser, ToggleRequest,
)
from eduadmin.services.audit_service import AuditService
from eduadmin.services.permission_editor import PermissionEditor
from eduadmin.services.remote_store import RoleClaimError
from eduadmin.services.user_directory import StaffUserNotFoundError, UserRecord
from eduadmin.state import AppState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard/roles", tags=["roles"])

owner_only = require_auth(CoarseRole.OWNER.value)


# ── Helpers ──

def _role_summary(role: Role, state: AppState) -> RoleSummary:
    return RoleSummary(
        id=role.id,
        name=role.name,
        description=role.description,
        dashboard=role.dashboard,
        has_local_override=state.storage.has_role_override(role.id),
        permissions=role.permissions.to_payload(),
    )


def _editor_state(editor: PermissionEditor, state: AppState) -> EditorState:
    selected = state.registry.find_role(editor.selected_role_id)
    working = editor.working
    return EditorState(
        selected_role_id=editor.selected_role_id,
        working=working.to_payload() if working is not None else None,
        dirty=selected is not None and working is not None and working != selected.permissions,
        roles=[_role_summary(r, state) for r in state.registry.list_roles()],
    )


def _staff_user(user: UserRecord) -> StaffUser:
    return StaffUser(id=user.id, name=user.name, email=user.email, campus=user.campus, role_id=user.role_id)


# ── Permissions editor ──

@router.get("", response_model=EditorState)
async def get_editor(session: AuthSession = Depends(owner_only), state: AppState = Depends(get_state)):
    return _editor_state(state.editor_for(session), state)


@router.post("/select", response_model=EditorState)
async def select_role(body: SelectRoleRequest,
                      session: AuthSession = Depends(owner_only),
                      state: AppState = Depends(get_state)):
    """Switch roles; any unsaved edits to the previous role are dropped."""
    editor = state.editor_for(session)
    try:
        editor.load_working_copy(body.role_id)
    except RoleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _editor_state(editor, state)


@router.post("/toggle", response_model=EditorState)
async def toggle(body: ToggleRequest,
                 session: AuthSession = Depends(owner_only),
                 state: AppState = Depends(get_state)):
    editor = state.editor_for(session)
    editor.toggle(body.module, body.action)
    return _editor_state(editor, state)


@router.post("/bulk", response_model=EditorState)
async def bulk_set(body: BulkSetRequest,
                   session: AuthSession = Depends(owner_only),
                   state: AppState = Depends(get_state)):
    """Grant all / revoke all on the working copy."""
    editor = state.editor_for(session)
    editor.bulk_set(body.value)
    return _editor_state(editor, state)


@router.post("/discard", response_model=EditorState)
async def discard(session: AuthSession = Depends(owner_only), state: AppState = Depends(get_state)):
    editor = state.editor_for(session)
    editor.discard()
    return _editor_state(editor, state)


@router.post("/save", response_model=SaveResponse)
async def save(session: AuthSession = Depends(owner_only),
               state: AppState = Depends(get_state),
               db: AsyncSession = Depends(get_db)):
    editor = state.editor_for(session)
    result = await editor.save_working_copy(actor=session.actor, audit=AuditService(db))
    return SaveResponse(
        role_id=result.role.id,
        remote_synced=result.remote_synced,
        warning=(
            f"Saved locally, but the server copy may be out of date: {result.remote_error}"
            if result.remote_error else None
        ),
        audit_event_id=result.audit_event_id,
    )


@router.post("/{role_id}/reset-override")
async def reset_override(role_id: str,
                         session: AuthSession = Depends(owner_only),
                         state: AppState = Depends(get_state),
                         db: AsyncSession = Depends(get_db)):
    """Forget the local override so the role follows the server copy or its baseline again."""
    editor = state.editor_for(session)
    try:
        role = await editor.reset_override(role_id, actor=session.actor, audit=AuditService(db))
    except RoleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True, "role_id": role.id}


@router.put("/admin-token")
async def set_admin_token(body: AdminTokenRequest,
                          session: AuthSession = Depends(owner_only),
                          state: AppState = Depends(get_state)):
    state.editor_for(session).set_admin_token(body.token)
    return {"ok": True}


# ── Role assignment ──

@router.get("/users", response_model=list[StaffUser])
async def list_users(q: str | None = Query(None, description="Match name, email or campus"),
                     session: AuthSession = Depends(owner_only),
                     state: AppState = Depends(get_state)):
    return [_staff_user(u) for u in state.users.search(q)]


@router.post("/users/{user_id}/role", response_model=AssignRoleResponse)
async def assign_role(user_id: str,
                      body: AssignRoleRequest,
                      session: AuthSession = Depends(owner_only),
                      state: AppState = Depends(get_state),
                      db: AsyncSession = Depends(get_db)):
    """
    Assign a role and push the claim to the user's account.

    A failed claim push keeps the local assignment and audit entry and
    answers 502 with the provider's message.
    """
    editor = state.editor_for(session)
    await session.refresh_token()
    try:
        result = await editor.assign_role(
            user_id, body.role_id,
            actor=session.actor, caller_token=session.id_token, audit=AuditService(db),
        )
    except (RoleNotFoundError, StaffUserNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RoleClaimError as e:
        logger.warning("Role claim for %s not applied: %s", user_id, e)
        user = state.users.get(user_id)
        return JSONResponse(
            status_code=502,
            content=AssignRoleResponse(ok=False, user=_staff_user(user), error=str(e)).model_dump(),
        )

    return AssignRoleResponse(ok=True, user=_staff_user(result.user), applied_claim=result.applied_claim)


# ── Audit ──

@router.get("/audit", response_model=AuditListResponse)
async def list_audit_entries(
    q: str | None = Query(None, description="Match user, action or details"),
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(50, ge=1, le=200, description="Page size"),
    session: AuthSession = Depends(owner_only),
    db: AsyncSession = Depends(get_db),
) -> AuditListResponse:
    service = AuditService(db)
    entries = await service.get_entries(q=q, limit=size, offset=(page - 1) * size)
    total = await service.get_entry_count(q=q)
    pages = (total + size - 1) // size if total > 0 else 1

    items = [
        AuditEntry(
            id=entry.id,
            event_id=entry.event_id,
            event_type=entry.event_type,
            timestamp=entry.created_at,
            user=entry.actor,
            action=entry.action,
            details=entry.details,
        )
        for entry in entries
    ]
    return AuditListResponse(total=total, page=page, size=size, pages=pages, items=items)


@router.get("/audit/integrity", response_model=IntegrityCheckResponse)
async def check_integrity(session: AuthSession = Depends(owner_only),
                          db: AsyncSession = Depends(get_db)) -> IntegrityCheckResponse:
    """Verify the hash-chain integrity of the audit trail."""
    result = await AuditService(db).verify_chain_integrity()
    return IntegrityCheckResponse(**result)
