"""
Process-wide RBAC state, built once at startup and injected into routes.

Tests build their own AppState so every test gets an isolated registry,
storage and identity provider.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from eduadmin.auth.context import AuthSession, SessionStore
from eduadmin.auth.identity import IdentityProvider
from eduadmin.auth.resolver import PermissionResolver
from eduadmin.auth.roles import RoleRegistry
from eduadmin.config import Settings, settings as default_settings
from eduadmin.services.permission_editor import PermissionEditor
from eduadmin.services.remote_store import RemoteRoleStore
from eduadmin.services.user_directory import UserDirectory
from eduadmin.storage.local import LocalStorage


@dataclass
class AppState:
    settings: Settings
    registry: RoleRegistry
    storage: LocalStorage
    remote: RemoteRoleStore
    identity: IdentityProvider
    resolver: PermissionResolver
    sessions: SessionStore
    users: UserDirectory
    http_client: httpx.AsyncClient

    def editor_for(self, session: AuthSession) -> PermissionEditor:
        """The operator's editor draft lives as long as their session."""
        if session.editor is None:
            session.editor = PermissionEditor(self.registry, self.storage, self.remote, self.users)
        return session.editor

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_state(
    cfg: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    storage: LocalStorage | None = None,
) -> AppState:
    cfg = cfg or default_settings
    client = http_client or httpx.AsyncClient(
        base_url=cfg.role_store_url,
        timeout=cfg.role_store_timeout,
    )
    registry = RoleRegistry()
    storage = storage if storage is not None else LocalStorage(cfg.local_storage_path or None)
    remote = RemoteRoleStore(client)
    identity = IdentityProvider()
    resolver = PermissionResolver.with_overrides(registry, remote, storage)
    return AppState(
        settings=cfg,
        registry=registry,
        storage=storage,
        remote=remote,
        identity=identity,
        resolver=resolver,
        sessions=SessionStore(identity, resolver, cfg),
        users=UserDirectory(),
        http_client=client,
    )
