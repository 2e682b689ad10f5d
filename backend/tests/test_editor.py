"""Tests for the permission editor, its propagation tiers, and the audit trail."""

import json

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from eduadmin.auth.permissions import Action, Module, RolePermissions
from eduadmin.auth.resolver import PermissionResolver
from eduadmin.auth.roles import RoleNotFoundError, RoleRegistry
from eduadmin.models import AuditLog
from eduadmin.services.audit_service import AuditService
from eduadmin.services.permission_editor import PermissionEditor
from eduadmin.services.remote_store import RemoteRoleStore, RoleClaimError
from eduadmin.services.user_directory import StaffUserNotFoundError, UserDirectory
from eduadmin.storage.local import LocalStorage

TOKEN = "store-token"


class FakeRoleStore:
    """In-memory stand-in for the remote role-permissions service."""

    def __init__(self, token: str = TOKEN, claim_response: tuple[int, dict] | None = None):
        self.token = token
        self.overrides: dict[str, dict] = {}
        self.claims: list[dict] = []
        self.claim_response = claim_response

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path.startswith("/api/role-perms/"):
            role_id = path.rsplit("/", 1)[-1]
            if role_id not in self.overrides:
                return httpx.Response(404, json={"error": "Not found"})
            return httpx.Response(200, json={"roleId": role_id, "permissions": self.overrides[role_id]})
        if path == "/api/admin/role-perms":
            if request.headers.get("x-admin-token") != self.token:
                return httpx.Response(401, json={"error": "Unauthorized"})
            body = json.loads(request.content)
            self.overrides[body["roleId"]] = body["permissions"]
            return httpx.Response(200, json={"ok": True})
        if path == "/api/admin/set-role-auth":
            body = json.loads(request.content)
            self.claims.append({"auth": request.headers.get("authorization"), **body})
            if self.claim_response is not None:
                status, payload = self.claim_response
                return httpx.Response(status, json=payload)
            return httpx.Response(200, json={
                "ok": True,
                "results": [{"email": body["email"], "ok": True, "appliedClaim": "limited"}],
            })
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), base_url="http://store/api")


class Workspace:
    def __init__(self, store: FakeRoleStore):
        self.store = store
        self.registry = RoleRegistry()
        self.storage = LocalStorage()
        self.remote = RemoteRoleStore(store.client())
        self.users = UserDirectory()
        self.editor = PermissionEditor(self.registry, self.storage, self.remote, self.users)
        self.resolver = PermissionResolver.with_overrides(self.registry, self.remote, self.storage)

    def fresh_resolver(self) -> PermissionResolver:
        """A resolver over the same tiers but a freshly seeded registry, as after a restart."""
        return PermissionResolver.with_overrides(RoleRegistry(), self.remote, self.storage)


@pytest.fixture
def store() -> FakeRoleStore:
    return FakeRoleStore()


@pytest_asyncio.fixture
async def ws(store) -> Workspace:
    workspace = Workspace(store)
    workspace.editor.set_admin_token(TOKEN)
    yield workspace
    await workspace.remote.client.aclose()


async def audit_rows(db_session) -> list[AuditLog]:
    result = await db_session.execute(select(AuditLog).order_by(AuditLog.id))
    return list(result.scalars())


# ── Working copy ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestWorkingCopy:
    async def test_first_role_selected_on_open(self, ws):
        assert ws.editor.selected_role_id == "role-frontdesk"
        assert ws.editor.working == ws.registry.get_role("role-frontdesk").permissions

    async def test_edits_do_not_touch_registry(self, ws):
        ws.editor.load_working_copy("role-admissions")
        ws.editor.toggle(Module.FEES, Action.VIEW)
        ws.editor.bulk_set(True)

        baseline = ws.registry.get_role("role-admissions").permissions
        assert not baseline.allows(Module.FEES, Action.VIEW)
        assert not baseline.allows(Module.REPORTS, Action.DELETE)

    async def test_toggle_flips_and_reports_value(self, ws):
        assert ws.editor.toggle(Module.STUDENTS, Action.VIEW) is False
        assert ws.editor.toggle(Module.STUDENTS, Action.VIEW) is True

    async def test_bulk_set_is_idempotent(self, ws):
        once = ws.editor.bulk_set(True).model_copy(deep=True)
        twice = ws.editor.bulk_set(True)
        assert once == twice == RolePermissions.full()

    async def test_bulk_revoke_leaves_nothing_granted(self, ws):
        ws.editor.bulk_set(True)
        assert ws.editor.bulk_set(False).granted() == []

    async def test_switching_role_drops_unsaved_edits(self, ws):
        ws.editor.toggle(Module.FEES, Action.DELETE)
        ws.editor.load_working_copy("role-admissions")
        ws.editor.load_working_copy("role-frontdesk")
        assert not ws.editor.working.allows(Module.FEES, Action.DELETE)

    async def test_discard_restores_registry_copy(self, ws):
        ws.editor.bulk_set(True)
        ws.editor.discard()
        assert ws.editor.working == ws.registry.get_role("role-frontdesk").permissions

    async def test_unknown_role_raises(self, ws):
        with pytest.raises(RoleNotFoundError):
            ws.editor.load_working_copy("role-ghost")

    async def test_admin_token_is_kept_in_local_storage(self, ws):
        ws.editor.set_admin_token("  other-token ")
        assert ws.editor.admin_token == "other-token"
        assert ws.storage.get_item("adminApiToken") == "other-token"


# ── Save & propagation ───────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSave:
    async def test_round_trip_to_fresh_resolution(self, ws, db_session):
        ws.editor.load_working_copy("role-admissions")
        assert ws.editor.toggle(Module.FEES, Action.VIEW) is True

        result = await ws.editor.save_working_copy(actor="owner@eduadmin.org", audit=AuditService(db_session))
        await db_session.commit()

        resolved = await ws.resolver.resolve("role-admissions")
        assert resolved.permissions.allows(Module.FEES, Action.VIEW)

        rows = await audit_rows(db_session)
        assert len(rows) == 1
        assert rows[0].details == "Admissions Coordinator"
        assert rows[0].action == "Updated permissions"
        assert rows[0].actor == "owner@eduadmin.org"
        assert rows[0].event_id == result.audit_event_id

    async def test_save_writes_every_tier(self, ws, store, db_session):
        ws.editor.toggle(Module.REPORTS, Action.VIEW)
        result = await ws.editor.save_working_copy(actor="owner@eduadmin.org", audit=AuditService(db_session))

        assert result.remote_synced
        assert result.remote_error is None
        assert ws.registry.get_role("role-frontdesk").permissions.allows(Module.REPORTS, Action.VIEW)
        assert ws.storage.read_role_override("role-frontdesk").allows(Module.REPORTS, Action.VIEW)
        assert store.overrides["role-frontdesk"]["Reports"]["view"] is True

    async def test_saved_role_survives_registry_reset(self, ws, db_session):
        ws.editor.toggle(Module.EVENTS, Action.ADD)
        await ws.editor.save_working_copy(actor="owner@eduadmin.org", audit=AuditService(db_session))

        resolved = await ws.fresh_resolver().resolve("role-frontdesk")
        assert resolved.source == "local"
        assert resolved.permissions.allows(Module.EVENTS, Action.ADD)

    async def test_remote_rejection_keeps_local_tiers(self, ws, store, db_session):
        ws.editor.set_admin_token("wrong")
        ws.editor.toggle(Module.FEES, Action.VIEW)

        result = await ws.editor.save_working_copy(actor="owner@eduadmin.org", audit=AuditService(db_session))

        assert not result.remote_synced
        assert "admin token" in result.remote_error
        assert store.overrides == {}
        assert ws.registry.get_role("role-frontdesk").permissions.allows(Module.FEES, Action.VIEW)
        assert ws.storage.has_role_override("role-frontdesk")
        assert len(await audit_rows(db_session)) == 1

    async def test_unreachable_remote_keeps_local_tiers(self, db_session):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        registry, storage = RoleRegistry(), LocalStorage()
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://store/api")
        editor = PermissionEditor(registry, storage, RemoteRoleStore(client), UserDirectory())
        editor.bulk_set(True)

        result = await editor.save_working_copy(actor="owner@eduadmin.org", audit=AuditService(db_session))

        assert result.remote_error.startswith("Remote store unreachable")
        assert registry.get_role("role-frontdesk").permissions == RolePermissions.full()
        await client.aclose()

    async def test_working_copy_is_recloned_after_save(self, ws, db_session):
        ws.editor.toggle(Module.FEES, Action.VIEW)
        await ws.editor.save_working_copy(actor="owner@eduadmin.org", audit=AuditService(db_session))

        ws.editor.toggle(Module.FEES, Action.EDIT)
        assert not ws.registry.get_role("role-frontdesk").permissions.allows(Module.FEES, Action.EDIT)

    async def test_local_override_shadows_later_baseline(self, ws, db_session):
        await ws.editor.save("role-campus-head", RolePermissions.empty(),
                             actor="owner@eduadmin.org", audit=AuditService(db_session))
        ws.registry.replace_permissions("role-campus-head", RolePermissions.full())

        resolved = await ws.resolver.resolve("role-campus-head")
        assert resolved.permissions == RolePermissions.empty()

    async def test_reset_override_restores_remote_copy(self, ws, store, db_session):
        store.overrides["role-campus-head"] = {"Reports": {"view": True}}
        await ws.editor.save("role-campus-head", RolePermissions.empty(),
                             actor="owner@eduadmin.org", audit=AuditService(db_session))
        store.overrides["role-campus-head"] = {"Reports": {"view": True}}

        await ws.editor.reset_override("role-campus-head", actor="owner@eduadmin.org", audit=AuditService(db_session))

        resolved = await ws.resolver.resolve("role-campus-head")
        assert resolved.source == "remote"
        assert resolved.permissions.allows(Module.REPORTS, Action.VIEW)
        rows = await audit_rows(db_session)
        assert [r.event_type for r in rows] == ["permissions_updated", "override_reset"]


# ── Role assignment ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAssignRole:
    async def test_assign_pushes_claim_and_audits(self, ws, store, db_session):
        result = await ws.editor.assign_role(
            "u1", "role-admissions",
            actor="owner@eduadmin.org", caller_token="caller-token", audit=AuditService(db_session),
        )

        assert result.user.role_id == "role-admissions"
        assert ws.users.get("u1").role_id == "role-admissions"
        assert result.applied_claim == "limited"
        assert store.claims == [{"auth": "Bearer caller-token", "email": "aarav@example.com", "role": "role-admissions"}]

        rows = await audit_rows(db_session)
        assert len(rows) == 1
        assert rows[0].action == "Assigned role"
        assert rows[0].details == "Aarav Sharma → Admissions Coordinator"

    async def test_missing_token_fails_after_local_assignment(self, ws, store, db_session):
        with pytest.raises(RoleClaimError, match="Not authenticated"):
            await ws.editor.assign_role(
                "u3", "role-campus-head",
                actor="owner@eduadmin.org", caller_token=None, audit=AuditService(db_session),
            )
        assert ws.users.get("u3").role_id == "role-campus-head"
        assert len(await audit_rows(db_session)) == 1
        assert store.claims == []

    async def test_claim_error_message_is_surfaced(self, db_session):
        store = FakeRoleStore(claim_response=(403, {"error": "Forbidden"}))
        ws = Workspace(store)
        with pytest.raises(RoleClaimError, match="Forbidden"):
            await ws.editor.assign_role(
                "u1", "role-admin",
                actor="owner@eduadmin.org", caller_token="caller-token", audit=AuditService(db_session),
            )
        await ws.remote.client.aclose()

    async def test_unknown_user(self, ws, db_session):
        with pytest.raises(StaffUserNotFoundError):
            await ws.editor.assign_role(
                "u404", "role-admin",
                actor="owner@eduadmin.org", caller_token="t", audit=AuditService(db_session),
            )

    async def test_unknown_role(self, ws, db_session):
        with pytest.raises(RoleNotFoundError):
            await ws.editor.assign_role(
                "u1", "role-ghost",
                actor="owner@eduadmin.org", caller_token="t", audit=AuditService(db_session),
            )
        assert ws.users.get("u1").role_id == "role-frontdesk"


# ── Audit trail ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAuditTrail:
    async def test_chain_verifies(self, db_session):
        audit = AuditService(db_session)
        await audit.log_permissions_updated("role-admin", "Admin", "owner@eduadmin.org")
        await audit.log_role_assigned("u1", "Aarav Sharma", "role-admin", "Admin", "owner@eduadmin.org")

        result = await audit.verify_chain_integrity()
        assert result == {"valid": True, "entries_checked": 2, "first_invalid": None}

    async def test_tampering_is_detected(self, db_session):
        audit = AuditService(db_session)
        first = await audit.log_permissions_updated("role-admin", "Admin", "owner@eduadmin.org")
        await audit.log_permissions_updated("role-frontdesk", "Front Desk Representative", "owner@eduadmin.org")
        first.details = "Someone else"
        await db_session.flush()

        result = await audit.verify_chain_integrity()
        assert not result["valid"]
        assert result["first_invalid"] == first.event_id

    async def test_search_and_count(self, db_session):
        audit = AuditService(db_session)
        await audit.log_permissions_updated("role-admin", "Admin", "owner@eduadmin.org")
        await audit.log_role_assigned("u3", "Rahul Verma", "role-admin", "Admin", "owner@eduadmin.org")

        assert await audit.get_entry_count() == 2
        assert await audit.get_entry_count(q="rahul") == 1
        newest = await audit.get_entries()
        assert [e.event_type for e in newest] == ["role_assigned", "permissions_updated"]
        only_saves = await audit.get_entries(event_type="permissions_updated")
        assert len(only_saves) == 1
