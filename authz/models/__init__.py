"""Models package — import all models so metadata.create_all can discover them."""

from authz.models.role import Role
from authz.models.user import User
from authz.models.permission import Permission
from authz.models.grants import RolePermission, UserPermission, UserRole
from authz.models.security_event import SecurityEvent

__all__ = [
    "Role", "User", "Permission",
    "RolePermission", "UserPermission", "UserRole",
    "SecurityEvent",
]
