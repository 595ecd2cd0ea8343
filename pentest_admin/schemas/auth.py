"""认证相关的请求/响应模型"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PERMISSION_CHECKS = 20


class UserPublic(BaseModel):
    """不含密码哈希的用户信息"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    username: str
    full_name: str | None = None
    is_active: bool
    must_change_password: bool = False
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoginRequest(BaseModel):
    """登录请求，username 也可以填邮箱"""
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class LoginResponse(BaseModel):
    user: UserPublic
    requires_password_change: bool
    message: str = "Login successful"


class SessionResponse(BaseModel):
    authenticated: bool
    user: UserPublic | None = None
    requires_password_change: bool = False


class PermissionsResponse(BaseModel):
    user_id: int
    permissions: list[str]


class PermissionQuery(BaseModel):
    """
    权限查询

    type=permission  时使用 permission 字段，返回单个结果
    type=permissions 时使用 permissions 字段，返回批量结果
    """
    type: Literal["permission", "permissions"]
    permission: str | None = Field(default=None, min_length=1, max_length=100)
    permissions: list[str] | None = Field(default=None, min_length=1, max_length=MAX_PERMISSION_CHECKS)


class PermissionCheckResult(BaseModel):
    permission: str
    granted: bool


class CheckPermissionsRequest(BaseModel):
    permissions: list[str] = Field(..., min_length=1, max_length=MAX_PERMISSION_CHECKS)

    @field_validator("permissions")
    @classmethod
    def _validate_names(cls, names: list[str]) -> list[str]:
        for name in names:
            if "." not in name:
                raise ValueError(f"Invalid permission name: {name}")
        return names


class CheckPermissionsResponse(BaseModel):
    user_id: int | None
    results: dict[str, bool]


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)


class MessageResponse(BaseModel):
    message: str
