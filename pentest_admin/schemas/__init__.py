"""
数据模式层 (Schemas)

使用 Pydantic 定义 API 的请求和响应模型：
- 自动数据验证
- 自动生成 OpenAPI 文档
- 类型安全的序列化/反序列化
"""

from pentest_admin.schemas.audit import (
    ActionStatisticsResponse,
    SystemAuditLogsResponse,
    UserAuditLogsResponse,
)
from pentest_admin.schemas.auth import (
    ChangePasswordRequest,
    CheckPermissionsRequest,
    CheckPermissionsResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PermissionCheckResult,
    PermissionQuery,
    PermissionsResponse,
    SessionResponse,
    UserPublic,
)
from pentest_admin.schemas.role import RoleListResponse
from pentest_admin.schemas.user import (
    PasswordResetResponse,
    UserCreate,
    UserCreateResponse,
    UserDetail,
    UserListResponse,
    UserStatusResponse,
    UserUpdate,
    UserUpdateResponse,
)

__all__ = [
    "ActionStatisticsResponse",
    "ChangePasswordRequest",
    "CheckPermissionsRequest",
    "CheckPermissionsResponse",
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "PasswordResetResponse",
    "PermissionCheckResult",
    "PermissionQuery",
    "PermissionsResponse",
    "RoleListResponse",
    "SessionResponse",
    "SystemAuditLogsResponse",
    "UserAuditLogsResponse",
    "UserCreate",
    "UserCreateResponse",
    "UserDetail",
    "UserListResponse",
    "UserPublic",
    "UserStatusResponse",
    "UserUpdate",
    "UserUpdateResponse",
]
