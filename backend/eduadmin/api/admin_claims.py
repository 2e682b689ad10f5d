"""
Role claim setter — writes `role` / `appRoleId` claims onto accounts.

POST /api/admin/set-role-auth   caller's bearer id token, caller must be owner
POST /api/admin/set-role        x-admin-token, plain coarse `role` claim

Both accept one {email, role} object or a list of them and report per-item
results.
"""

import logging

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request

from eduadmin.api.deps import bearer_identity, get_state
from eduadmin.api.role_perms import check_admin_token
from eduadmin.auth.identity import IdentityError
from eduadmin.auth.roles import CoarseRole, claim_for_role_id
from eduadmin.schemas.schemas import RoleClaimItem
from eduadmin.state import AppState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _items(payload) -> list:
    return payload if isinstance(payload, list) else [payload]


def _parse_item(raw) -> RoleClaimItem | None:
    if not isinstance(raw, dict):
        return None
    item = RoleClaimItem(
        email=raw.get("email") if isinstance(raw.get("email"), str) else None,
        role=raw.get("role") if isinstance(raw.get("role"), str) else None,
    )
    if not item.email or not item.role:
        return None
    return item


@router.post("/set-role-auth")
async def set_role_auth(
    request: Request,
    payload=Body(...),
    state: AppState = Depends(get_state),
):
    """Apply app roles to accounts; the coarse claim is derived from the role id."""
    claims, caller_role = bearer_identity(request, state)
    if caller_role != CoarseRole.OWNER.value:
        raise HTTPException(status_code=403, detail="Forbidden")

    results = []
    for raw in _items(payload):
        item = _parse_item(raw)
        if item is None:
            email = raw.get("email") if isinstance(raw, dict) else None
            results.append({"email": email, "ok": False, "error": "Invalid payload"})
            continue
        try:
            account = state.identity.get_user_by_email(item.email)
            claim = claim_for_role_id(item.role).value
            state.identity.set_custom_claims(account.uid, {"role": claim, "appRoleId": item.role})
            results.append({"email": item.email, "ok": True, "appliedClaim": claim})
            logger.info("Role %s (%s) applied to %s by %s", item.role, claim, item.email, claims.get("email"))
        except IdentityError as e:
            results.append({"email": item.email, "ok": False, "error": str(e)})

    return {"ok": True, "results": results}


@router.post("/set-role")
async def set_role(
    payload=Body(...),
    x_admin_token: str | None = Header(None),
    state: AppState = Depends(get_state),
):
    """Set a plain coarse role claim, authorised by the admin API token."""
    check_admin_token(x_admin_token, state)

    results = []
    for raw in _items(payload):
        item = _parse_item(raw)
        if item is None:
            email = raw.get("email") if isinstance(raw, dict) else None
            results.append({"email": email, "ok": False, "error": "Invalid payload"})
            continue
        try:
            account = state.identity.get_user_by_email(item.email)
            state.identity.set_custom_claims(account.uid, {"role": item.role})
            results.append({"email": item.email, "ok": True})
        except IdentityError as e:
            results.append({"email": item.email, "ok": False, "error": str(e)})

    return {"ok": True, "results": results}
