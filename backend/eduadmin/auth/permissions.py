"""
Permission model — dashboard modules, actions, and the per-role grant matrix.

A RolePermissions object is total: every module carries a PermissionSet and
every PermissionSet carries all four actions. Anything missing from an
incoming payload is read as False, so a permission lookup never needs a
"module not found" branch.

Override payloads travel as JSON keyed by the module display name:

    {"Students": {"view": true, "add": false, "edit": false, "delete": false}, ...}
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


class Module(str, Enum):
    DASHBOARD = "Dashboard"
    ENQUIRIES = "Enquiries"
    ADMISSIONS = "Admissions"
    STUDENTS = "Students"
    COURSES = "Courses"
    FEES = "Fees"
    BATCHES = "Batches"
    CERTIFICATES = "Certificates"
    CAMPUSES = "Campuses"
    EMPLOYEES = "Employees"
    USERS = "Users"
    EVENTS = "Events"
    EXPENSES = "Expenses"
    REPORTS = "Reports"

    @property
    def attr(self) -> str:
        return self.name.lower()


class Action(str, Enum):
    VIEW = "view"
    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"


class PermissionSet(BaseModel):
    """The four action flags for one module."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    view: bool = False
    add: bool = False
    edit: bool = False
    delete: bool = False

    @field_validator("view", "add", "edit", "delete", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    def allows(self, action: Action) -> bool:
        return bool(getattr(self, Action(action).value))


def empty_permission_set() -> PermissionSet:
    return PermissionSet()


def _module_field(module: Module):
    return Field(default_factory=PermissionSet, alias=module.value)


class RolePermissions(BaseModel):
    """Module -> PermissionSet for every module in the dashboard."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    dashboard: PermissionSet = _module_field(Module.DASHBOARD)
    enquiries: PermissionSet = _module_field(Module.ENQUIRIES)
    admissions: PermissionSet = _module_field(Module.ADMISSIONS)
    students: PermissionSet = _module_field(Module.STUDENTS)
    courses: PermissionSet = _module_field(Module.COURSES)
    fees: PermissionSet = _module_field(Module.FEES)
    batches: PermissionSet = _module_field(Module.BATCHES)
    certificates: PermissionSet = _module_field(Module.CERTIFICATES)
    campuses: PermissionSet = _module_field(Module.CAMPUSES)
    employees: PermissionSet = _module_field(Module.EMPLOYEES)
    users: PermissionSet = _module_field(Module.USERS)
    events: PermissionSet = _module_field(Module.EVENTS)
    expenses: PermissionSet = _module_field(Module.EXPENSES)
    reports: PermissionSet = _module_field(Module.REPORTS)

    @model_validator(mode="before")
    @classmethod
    def _null_modules_are_empty(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return {k: ({} if v is None else v) for k, v in data.items()}
        return data

    # ── Construction ──

    @classmethod
    def empty(cls) -> RolePermissions:
        return cls()

    @classmethod
    def full(cls) -> RolePermissions:
        perms = cls()
        perms.set_all(True)
        return perms

    @classmethod
    def from_grants(cls, grants: Mapping[Module, Iterable[Action]]) -> RolePermissions:
        """Build a matrix where only the listed (module, action) cells are True."""
        perms = cls()
        for module, actions in grants.items():
            for action in actions:
                perms.set_action(module, action, True)
        return perms

    # ── Access ──

    def get(self, module: Module) -> PermissionSet:
        return getattr(self, Module(module).attr)

    def allows(self, module: Module, action: Action = Action.VIEW) -> bool:
        return self.get(module).allows(action)

    def set_action(self, module: Module, action: Action, value: bool) -> None:
        setattr(self.get(module), Action(action).value, bool(value))

    def set_all(self, value: bool) -> None:
        for module in Module:
            for action in Action:
                self.set_action(module, action, value)

    def with_action(self, module: Module, action: Action, value: bool) -> RolePermissions:
        updated = self.model_copy(deep=True)
        updated.set_action(module, action, value)
        return updated

    def with_all(self, value: bool) -> RolePermissions:
        updated = self.model_copy(deep=True)
        updated.set_all(value)
        return updated

    def granted(self) -> list[tuple[Module, Action]]:
        return [(m, a) for m in Module for a in Action if self.allows(m, a)]

    def to_payload(self) -> dict[str, dict[str, bool]]:
        return self.model_dump(by_alias=True)


def clone_permissions(perms: RolePermissions | Mapping[str, Any]) -> RolePermissions:
    """
    Deep copy a permission matrix.

    The result shares no PermissionSet with the input, so an editor can work
    on it without touching the registry entry it came from. Raw mappings are
    normalized on the way through: missing actions and modules become False.
    """
    if isinstance(perms, RolePermissions):
        return perms.model_copy(deep=True)
    return RolePermissions.model_validate(perms)


def get_action(perms: RolePermissions | None, module: Module | str, action: Action | str = Action.VIEW) -> bool:
    """Total lookup: anything that cannot be resolved reads as False."""
    if perms is None:
        return False
    try:
        return perms.allows(Module(module), Action(action))
    except ValueError:
        return False


def parse_permissions(payload: Any) -> RolePermissions | None:
    """
    Parse an override payload. Returns None for anything malformed.

    Accepts a mapping or a JSON document. Non-objects, undecodable JSON and
    values that fail validation are treated as "no override".
    """
    if isinstance(payload, (str, bytes, bytearray)):
        try:
            payload = json.loads(payload)
        except ValueError:
            return None
    if not isinstance(payload, Mapping):
        return None
    try:
        return RolePermissions.model_validate(payload)
    except ValidationError:
        return None
