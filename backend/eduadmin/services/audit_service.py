"""
Audit Service — append-only record of permission and role changes.

Every permission save and every role (re)assignment writes one entry.
Entries are hash-chained so tampering with stored rows is detectable; they
are never updated or deleted.
"""

import hashlib
import json
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from eduadmin.models import AuditLog


class AuditService:
    """Immutable, hash-chained audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _calculate_hash(self, content: dict, previous_hash: str | None) -> str:
        """SHA-256 hash of entry contents + previous hash."""
        payload = {
            "content": content,
            "previous_hash": previous_hash or "",
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    async def _get_latest_hash(self) -> str | None:
        result = await self.session.execute(
            select(AuditLog.current_hash)
            .order_by(AuditLog.id.desc())
            .limit(1)
        )
        return result.scalar()

    async def log_event(
        self,
        event_type: str,
        actor: str,
        action: str,
        details: str | None = None,
        resource_id: str | None = None,
    ) -> AuditLog:
        """
        Write an immutable audit entry.

        Args:
            event_type: e.g. "permissions_updated", "role_assigned"
            actor: who did it, e.g. "owner@eduadmin.org"
            action: short label shown in the audit table
            details: free text, e.g. the role name
            resource_id: the role or user id affected
        """
        previous_hash = await self._get_latest_hash()

        content_for_hash = {
            "event_type": event_type,
            "actor": actor,
            "action": action,
            "details": details,
            "resource_id": resource_id,
        }
        current_hash = self._calculate_hash(content_for_hash, previous_hash)

        entry = AuditLog(
            event_id=str(uuid4()),
            event_type=event_type,
            actor=actor,
            action=action,
            details=details,
            resource_id=resource_id,
            previous_hash=previous_hash,
            current_hash=current_hash,
            created_at=datetime.now(timezone.utc).replace(tzinfo=None),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def log_permissions_updated(self, role_id: str, role_name: str, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="permissions_updated",
            actor=actor,
            action="Updated permissions",
            details=role_name,
            resource_id=role_id,
        )

    async def log_role_assigned(self, user_id: str, user_label: str, role_id: str, role_name: str, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="role_assigned",
            actor=actor,
            action="Assigned role",
            details=f"{user_label} → {role_name}",
            resource_id=user_id,
        )

    async def log_override_reset(self, role_id: str, role_name: str, actor: str) -> AuditLog:
        return await self.log_event(
            event_type="override_reset",
            actor=actor,
            action="Reset permissions override",
            details=role_name,
            resource_id=role_id,
        )

    async def verify_chain_integrity(self) -> dict:
        """Walk the full chain and verify each entry's hash."""
        result = await self.session.execute(
            select(AuditLog).order_by(AuditLog.id.asc())
        )
        entries = list(result.scalars())

        if not entries:
            return {"valid": True, "entries_checked": 0, "first_invalid": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].current_hash if i > 0 else None
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "previous_hash mismatch",
                }

            content = {
                "event_type": entry.event_type,
                "actor": entry.actor,
                "action": entry.action,
                "details": entry.details,
                "resource_id": entry.resource_id,
            }
            expected_hash = self._calculate_hash(content, entry.previous_hash)
            if entry.current_hash != expected_hash:
                return {
                    "valid": False,
                    "entries_checked": i + 1,
                    "first_invalid": entry.event_id,
                    "reason": "current_hash mismatch (data tampered)",
                }

        return {"valid": True, "entries_checked": len(entries), "first_invalid": None}

    @staticmethod
    def _filtered(query, q: str | None, event_type: str | None):
        if event_type:
            query = query.where(AuditLog.event_type == event_type)
        if q:
            pattern = f"%{q.lower()}%"
            query = query.where(or_(
                func.lower(AuditLog.actor).like(pattern),
                func.lower(AuditLog.action).like(pattern),
                func.lower(func.coalesce(AuditLog.details, "")).like(pattern),
            ))
        return query

    async def get_entries(
        self,
        q: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLog]:
        """Newest first. `q` matches actor, action or details, case-insensitively."""
        query = self._filtered(select(AuditLog), q, event_type)
        query = query.order_by(AuditLog.id.desc()).offset(offset).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars())

    async def get_entry_count(self, q: str | None = None, event_type: str | None = None) -> int:
        query = self._filtered(select(func.count()).select_from(AuditLog), q, event_type)
        result = await self.session.execute(query)
        return result.scalar() or 0
