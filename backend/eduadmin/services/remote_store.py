"""
Remote role store client — server-side permission overrides and role claims.

Talks to three endpoints:

    GET  /role-perms/{roleId}        read an override (404 when none)
    POST /admin/role-perms           write an override (x-admin-token header)
    POST /admin/set-role-auth        set role claims (caller's bearer id token)

Reads are best-effort: every failure collapses to "no override". Writes
report failure to the caller, who decides whether it is fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from eduadmin.auth.permissions import RolePermissions, parse_permissions
from eduadmin.middleware.metrics import remote_override_failures_total

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """A write to the remote store was rejected or could not be sent."""


class RoleClaimError(Exception):
    """The role-claim setter refused or failed; message is user-facing."""


@dataclass
class ClaimResult:
    email: str
    applied_claim: str | None


class RemoteRoleStore:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def fetch_permissions(self, role_id: str) -> RolePermissions | None:
        """Read the stored override for a role. Never raises."""
        try:
            resp = await self.client.get(f"/role-perms/{quote(role_id, safe='')}")
        except httpx.HTTPError as exc:
            remote_override_failures_total.labels(operation="read").inc()
            logger.warning("Remote override fetch for %s failed: %s", role_id, exc)
            return None

        if resp.status_code == 404:
            return None
        if not resp.is_success:
            remote_override_failures_total.labels(operation="read").inc()
            logger.warning("Remote override fetch for %s returned %s", role_id, resp.status_code)
            return None

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Remote override for %s is not JSON", role_id)
            return None
        if not isinstance(data, dict) or data.get("permissions") is None:
            return None
        return parse_permissions(data["permissions"])

    async def save_permissions(self, role_id: str, permissions: RolePermissions, admin_token: str = "") -> None:
        """Write an override. Raises RemoteStoreError on any failure."""
        headers = {"x-admin-token": admin_token} if admin_token else {}
        try:
            resp = await self.client.post(
                "/admin/role-perms",
                json={"roleId": role_id, "permissions": permissions.to_payload()},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            remote_override_failures_total.labels(operation="write").inc()
            raise RemoteStoreError(f"Remote store unreachable: {exc}") from exc

        if resp.status_code == 401:
            remote_override_failures_total.labels(operation="write").inc()
            raise RemoteStoreError("Remote store rejected the admin token")
        if not resp.is_success:
            remote_override_failures_total.labels(operation="write").inc()
            raise RemoteStoreError(f"Remote store returned {resp.status_code}")

    async def set_role_claim(self, email: str, role_id: str, caller_token: str) -> ClaimResult:
        """Apply a role to an account's claims. Raises RoleClaimError with the provider's message."""
        try:
            resp = await self.client.post(
                "/admin/set-role-auth",
                json={"email": email, "role": role_id},
                headers={"Authorization": f"Bearer {caller_token}"},
            )
        except httpx.HTTPError as exc:
            raise RoleClaimError(str(exc) or "Role service unreachable") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if not resp.is_success or not data.get("ok"):
            raise RoleClaimError(_error_message(data))

        applied = None
        results = data.get("results")
        for item in results if isinstance(results, list) else []:
            if not isinstance(item, dict):
                continue
            if item.get("email") == email:
                if not item.get("ok"):
                    raise RoleClaimError(str(item.get("error") or "Failed"))
                applied = item.get("appliedClaim")
        return ClaimResult(email=email, applied_claim=applied)


def _error_message(data: dict) -> str:
    """Flatten an error body into one line for the operator."""
    message = data.get("error") or data.get("detail")
    if not message:
        return "Failed"
    if isinstance(message, str):
        return message
    if isinstance(message, list):
        # FastAPI validation errors: [{"loc": [...], "msg": "...", ...}, ...]
        parts = [str(m.get("msg", m)) if isinstance(m, dict) else str(m) for m in message]
        return "; ".join(parts) or "Failed"
    return str(message)
