"""
Permission Editor — draft, save, and propagate one role's permission matrix.

An editor holds a working copy cloned from the registry. Toggles and bulk
changes only touch that copy. save() pushes it out to every tier:

    (a) role registry        in-process, always succeeds
    (b) local storage        rolePerms:{roleId}, always succeeds
    (c) remote store         best effort, failure is reported, not raised
    (d) audit log            one "Updated permissions" entry

The tiers are not transactional. A failed remote write leaves (a) and (b)
committed and surfaces in SaveResult.remote_error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from eduadmin.auth.permissions import Action, Module, RolePermissions, clone_permissions
from eduadmin.auth.roles import Role, RoleRegistry
from eduadmin.services.audit_service import AuditService
from eduadmin.services.remote_store import RemoteRoleStore, RemoteStoreError, RoleClaimError
from eduadmin.services.user_directory import UserDirectory, UserRecord
from eduadmin.storage.local import ADMIN_TOKEN_KEY, LocalStorage

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    role: Role
    remote_synced: bool
    remote_error: str | None
    audit_event_id: str


@dataclass
class AssignResult:
    user: UserRecord
    role: Role
    applied_claim: str | None
    remote_applied: bool


class PermissionEditor:
    def __init__(
        self,
        registry: RoleRegistry,
        storage: LocalStorage,
        remote: RemoteRoleStore,
        users: UserDirectory,
    ):
        self.registry = registry
        self.storage = storage
        self.remote = remote
        self.users = users

        self.selected_role_id: str | None = None
        self.working: RolePermissions | None = None

        roles = registry.list_roles()
        if roles:
            self.load_working_copy(roles[0].id)

    # ── Draft ──

    def load_working_copy(self, role_id: str) -> RolePermissions:
        """Select a role and start a fresh draft from its registry entry."""
        role = self.registry.get_role(role_id)
        self.selected_role_id = role.id
        self.working = clone_permissions(role.permissions)
        return self.working

    def _draft(self) -> RolePermissions:
        if self.working is None:
            raise LookupError("No role selected")
        return self.working

    def toggle(self, module: Module, action: Action) -> bool:
        draft = self._draft()
        value = not draft.allows(module, action)
        self.working = draft.with_action(module, action, value)
        return value

    def bulk_set(self, value: bool) -> RolePermissions:
        self.working = self._draft().with_all(value)
        return self.working

    def discard(self) -> RolePermissions:
        return self.load_working_copy(self.selected_role_id)

    # ── Admin token (operator supplied) ──

    @property
    def admin_token(self) -> str:
        return self.storage.get_item(ADMIN_TOKEN_KEY) or ""

    def set_admin_token(self, token: str) -> None:
        self.storage.set_item(ADMIN_TOKEN_KEY, token.strip())

    # ── Propagation ──

    async def save(
        self,
        role_id: str,
        permissions: RolePermissions,
        *,
        actor: str,
        audit: AuditService,
    ) -> SaveResult:
        role = self.registry.replace_permissions(role_id, permissions)
        self.storage.write_role_override(role_id, role.permissions)

        remote_error = None
        try:
            await self.remote.save_permissions(role_id, role.permissions, self.admin_token)
        except RemoteStoreError as exc:
            remote_error = str(exc)
            logger.warning("Permissions for %s saved locally; remote copy may be stale: %s", role_id, exc)

        entry = await audit.log_permissions_updated(role.id, role.name, actor)

        if role_id == self.selected_role_id:
            self.working = clone_permissions(role.permissions)

        logger.info("Permissions updated for %s by %s", role_id, actor)
        return SaveResult(
            role=role,
            remote_synced=remote_error is None,
            remote_error=remote_error,
            audit_event_id=entry.event_id,
        )

    async def save_working_copy(self, *, actor: str, audit: AuditService) -> SaveResult:
        return await self.save(self.selected_role_id, self._draft(), actor=actor, audit=audit)

    async def reset_override(self, role_id: str, *, actor: str, audit: AuditService) -> Role:
        """Drop the local override so the role falls back to remote/baseline."""
        role = self.registry.get_role(role_id)
        self.storage.clear_role_override(role_id)
        await audit.log_override_reset(role.id, role.name, actor)
        logger.info("Local override for %s cleared by %s", role_id, actor)
        return role

    async def assign_role(
        self,
        user_id: str,
        role_id: str,
        *,
        actor: str,
        caller_token: str | None,
        audit: AuditService,
    ) -> AssignResult:
        """
        Point a user at a role, then push the claim to their account.

        The local mapping and audit entry are kept even when the claim call
        fails; RoleClaimError carries the message to show the operator.
        """
        role = self.registry.get_role(role_id)
        user = self.users.assign(user_id, role.id)
        await audit.log_role_assigned(user.id, user.name, role.id, role.name, actor)
        logger.info("Role %s assigned to %s by %s", role.id, user.id, actor)

        if not user.email:
            return AssignResult(user=user, role=role, applied_claim=None, remote_applied=False)
        if not caller_token:
            raise RoleClaimError("Not authenticated")

        result = await self.remote.set_role_claim(user.email, role.id, caller_token)
        return AssignResult(user=user, role=role, applied_claim=result.applied_claim, remote_applied=True)
