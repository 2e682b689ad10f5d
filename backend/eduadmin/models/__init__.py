from eduadmin.models.audit import AuditLog  # noqa: F401
from eduadmin.models.role_override import RolePermissionOverride  # noqa: F401
