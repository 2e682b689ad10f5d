from eduadmin.auth.permissions import Action, Module, PermissionSet, RolePermissions, clone_permissions, get_action
from eduadmin.auth.roles import CoarseRole, Role, RoleRegistry

__all__ = [
    "Action", "Module", "PermissionSet", "RolePermissions",
    "clone_permissions", "get_action",
    "CoarseRole", "Role", "RoleRegistry",
]
