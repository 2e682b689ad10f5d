"""
Client-local key/value storage.

Plays the part of the browser's localStorage for the dashboard: string keys,
string values, optionally mirrored to a JSON file so overrides survive a
restart. Keys in use:

    rolePerms:{roleId}   JSON-encoded RolePermissions override
    adminApiToken        operator-supplied token for remote permission writes
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from eduadmin.auth.permissions import RolePermissions, parse_permissions

logger = logging.getLogger(__name__)

ROLE_PERMS_PREFIX = "rolePerms:"
ADMIN_TOKEN_KEY = "adminApiToken"


def role_perms_key(role_id: str) -> str:
    return f"{ROLE_PERMS_PREFIX}{role_id}"


class LocalStorage:
    def __init__(self, path: str | Path | None = None):
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._items: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Local storage %s unreadable (%s), starting empty", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Local storage %s is not an object, starting empty", self._path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._items, indent=2), encoding="utf-8")

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value
            self._flush()

    def remove_item(self, key: str) -> None:
        with self._lock:
            if self._items.pop(key, None) is not None:
                self._flush()

    def keys(self) -> list[str]:
        return list(self._items)

    # ── Role permission overrides ──

    def read_role_override(self, role_id: str) -> RolePermissions | None:
        """Stored override for a role, or None when absent or malformed."""
        raw = self.get_item(role_perms_key(role_id))
        if raw is None:
            return None
        perms = parse_permissions(raw)
        if perms is None:
            logger.debug("Ignoring malformed local override for %s", role_id)
        return perms

    def write_role_override(self, role_id: str, permissions: RolePermissions) -> None:
        self.set_item(role_perms_key(role_id), json.dumps(permissions.to_payload()))

    def clear_role_override(self, role_id: str) -> None:
        self.remove_item(role_perms_key(role_id))

    def has_role_override(self, role_id: str) -> bool:
        return role_perms_key(role_id) in self._items
