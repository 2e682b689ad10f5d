"""
Permission resolver — turns an appRoleId into the effective permission matrix.

Sources are consulted in a fixed order and the last one that answers wins:

    Baseline (role registry)  <  Remote override  <  Local override

Each source is a provider returning a RolePermissions or None. Providers are
awaited one after another, never concurrently, so a slow remote read cannot
land after the local read and clobber it.

A missing appRoleId resolves to the empty matrix without touching any source.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from eduadmin.auth.permissions import RolePermissions, clone_permissions
from eduadmin.auth.roles import CoarseRole, RoleRegistry
from eduadmin.config import Settings, settings as default_settings
from eduadmin.middleware.metrics import permission_resolutions_total
from eduadmin.services.remote_store import RemoteRoleStore
from eduadmin.storage.local import LocalStorage

logger = logging.getLogger(__name__)


class PermissionProvider(Protocol):
    name: str

    async def load(self, role_id: str) -> RolePermissions | None: ...


class BaselineProvider:
    name = "baseline"

    def __init__(self, registry: RoleRegistry):
        self.registry = registry

    async def load(self, role_id: str) -> RolePermissions | None:
        role = self.registry.find_role(role_id)
        return clone_permissions(role.permissions) if role else None


class RemoteOverrideProvider:
    name = "remote"

    def __init__(self, store: RemoteRoleStore):
        self.store = store

    async def load(self, role_id: str) -> RolePermissions | None:
        return await self.store.fetch_permissions(role_id)


class LocalOverrideProvider:
    name = "local"

    def __init__(self, storage: LocalStorage):
        self.storage = storage

    async def load(self, role_id: str) -> RolePermissions | None:
        return self.storage.read_role_override(role_id)


@dataclass
class ResolvedPermissions:
    role_id: str | None
    permissions: RolePermissions
    source: str


class PermissionResolver:
    def __init__(self, registry: RoleRegistry, overrides: Sequence[PermissionProvider] = ()):
        self.registry = registry
        self.providers: list[PermissionProvider] = [BaselineProvider(registry), *overrides]

    @classmethod
    def with_overrides(cls, registry: RoleRegistry, remote: RemoteRoleStore, storage: LocalStorage) -> PermissionResolver:
        return cls(registry, [RemoteOverrideProvider(remote), LocalOverrideProvider(storage)])

    async def resolve(self, app_role_id: str | None) -> ResolvedPermissions:
        if not app_role_id:
            permission_resolutions_total.labels(source="none").inc()
            return ResolvedPermissions(None, RolePermissions.empty(), "none")

        perms, source = RolePermissions.empty(), "empty"
        for provider in self.providers:
            try:
                loaded = await provider.load(app_role_id)
            except Exception:
                logger.warning("Permission provider %s failed for %s", provider.name, app_role_id, exc_info=True)
                continue
            if loaded is not None:
                perms, source = loaded, provider.name

        permission_resolutions_total.labels(source=source).inc()
        logger.debug("Resolved %s from %s", app_role_id, source)
        return ResolvedPermissions(app_role_id, perms, source)

    def resolve_baseline(self, app_role_id: str | None) -> ResolvedPermissions:
        """Registry-only resolution, used when the identity token cannot be read."""
        role = self.registry.find_role(app_role_id)
        if role is None:
            permission_resolutions_total.labels(source="none").inc()
            return ResolvedPermissions(app_role_id, RolePermissions.empty(), "none")
        permission_resolutions_total.labels(source="baseline").inc()
        return ResolvedPermissions(app_role_id, clone_permissions(role.permissions), "baseline")


# ── Coarse role / appRoleId from token claims ────────────────────────────────

def fallback_identity(email: str | None, cfg: Settings | None = None) -> tuple[str | None, str | None]:
    """Bootstrap allowlist for the two seed accounts: (coarse role, appRoleId)."""
    cfg = cfg or default_settings
    addr = (email or "").strip().lower()
    if not addr:
        return None, None
    if addr == cfg.owner_email.lower():
        return CoarseRole.OWNER.value, None
    if addr == cfg.limited_email.lower():
        return CoarseRole.LIMITED.value, cfg.limited_default_role_id
    return None, None


def _claim(claims: Mapping[str, Any], key: str) -> str | None:
    value = claims.get(key)
    return value if isinstance(value, str) and value else None


def resolve_identity(claims: Mapping[str, Any], email: str | None, cfg: Settings | None = None) -> tuple[str | None, str | None]:
    """
    Derive (coarse role, appRoleId) from decoded token claims.

    An explicit `role` claim is taken as-is and the allowlist is skipped
    entirely. Without one, the allowlist supplies the coarse role and, when
    the token has no appRoleId either, the bootstrap role id.
    """
    role = _claim(claims, "role")
    app_role_id = _claim(claims, "appRoleId")
    if role is None:
        role, fallback_role_id = fallback_identity(email, cfg)
        if app_role_id is None:
            app_role_id = fallback_role_id
    return role, app_role_id
