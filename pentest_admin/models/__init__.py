"""
数据模型层 (ORM Models)

数据模型关系图：
    User (用户)
       │
       ├──< UserRole >── Role (角色)
       │                   │
       │                   └──< RolePermission >── Permission (权限)
       │
       └──< AuditLog (审计日志，操作者)
"""

from pentest_admin.models.audit_log import AuditLog
from pentest_admin.models.rbac import Permission, Role, RolePermission, UserRole
from pentest_admin.models.user import User

__all__ = [
    "AuditLog",
    "Permission",
    "Role",
    "RolePermission",
    "User",
    "UserRole",
]
