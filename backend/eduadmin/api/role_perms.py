"""
Role permissions store — server-side overrides keyed by role id.

Reads are open; writes require the ADMIN_API_TOKEN in `x-admin-token`.
Deletes go through the owner-only DELETE guard.
"""

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eduadmin.api.deps import get_db, get_state
from eduadmin.auth.permissions import parse_permissions
from eduadmin.models import RolePermissionOverride
from eduadmin.schemas.schemas import RolePermsWrite
from eduadmin.state import AppState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["role-perms"])


def check_admin_token(token: str | None, state: AppState) -> None:
    expected = state.settings.admin_api_token
    supplied = (token or "").strip()
    if not expected or not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/role-perms")
async def list_role_perms(db: AsyncSession = Depends(get_db)):
    """All stored overrides as {roleId: permissions}."""
    result = await db.execute(select(RolePermissionOverride).order_by(RolePermissionOverride.role_id))
    return {row.role_id: row.permissions for row in result.scalars()}


@router.get("/role-perms/{role_id}")
async def get_role_perms(role_id: str, db: AsyncSession = Depends(get_db)):
    row = await db.get(RolePermissionOverride, role_id)
    if row is None:
        return JSONResponse(status_code=404, content={"error": "Not found"})
    return {"roleId": role_id, "permissions": row.permissions}


@router.post("/admin/role-perms")
async def save_role_perms(
    body: RolePermsWrite,
    x_admin_token: str | None = Header(None),
    state: AppState = Depends(get_state),
    db: AsyncSession = Depends(get_db),
):
    check_admin_token(x_admin_token, state)

    perms = parse_permissions(body.permissions) if body.permissions is not None else None
    if not body.role_id or perms is None:
        raise HTTPException(status_code=400, detail="Invalid payload")

    row = await db.get(RolePermissionOverride, body.role_id)
    if row is None:
        db.add(RolePermissionOverride(role_id=body.role_id, permissions=perms.to_payload()))
    else:
        row.permissions = perms.to_payload()

    logger.info("Remote override stored for %s", body.role_id)
    return {"ok": True}


@router.delete("/role-perms/{role_id}")
async def delete_role_perms(role_id: str, db: AsyncSession = Depends(get_db)):
    row = await db.get(RolePermissionOverride, role_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Not found")
    await db.delete(row)
    logger.info("Remote override removed for %s", role_id)
    return {"ok": True}
