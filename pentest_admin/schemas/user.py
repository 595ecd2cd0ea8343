"""用户管理相关的请求/响应模型"""

from datetime import datetime

from pydantic import BaseModel, Field

from pentest_admin.schemas.auth import UserPublic


class RoleBrief(BaseModel):
    id: int
    name: str
    display_name: str


class RoleDetail(RoleBrief):
    description: str | None = None
    is_system: bool
    permissions: list[str] = Field(default_factory=list)


class UserCreate(BaseModel):
    """创建用户请求，密码由系统生成"""
    email: str = Field(..., min_length=3, max_length=255)
    username: str = Field(..., min_length=3, max_length=20)
    full_name: str | None = Field(default=None, max_length=50)
    role_ids: list[int] = Field(default_factory=list, description="要分配的非系统角色 ID")


class UserCreateResponse(BaseModel):
    """创建用户响应（含临时密码）"""
    user: UserPublic
    roles: list[RoleBrief]
    temporary_password: str = Field(..., description="临时密码，仅此时显示一次")
    requires_password_change: bool = True


class UserUpdate(BaseModel):
    """修改用户：资料字段和角色可以同时提交"""
    email: str | None = Field(default=None, min_length=3, max_length=255)
    username: str | None = Field(default=None, min_length=3, max_length=20)
    full_name: str | None = Field(default=None, max_length=50)
    role_ids: list[int] | None = None
    reason: str | None = Field(default=None, max_length=500)


class RoleChanges(BaseModel):
    added_roles: list[RoleBrief]
    removed_roles: list[RoleBrief]
    current_roles: list[RoleBrief]
    changed: bool


class UserWithRoles(UserPublic):
    roles: list[RoleBrief] = Field(default_factory=list)


class UserDetail(UserPublic):
    roles: list[RoleDetail] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)


class UserUpdateResponse(BaseModel):
    user: UserDetail
    profile_changes: dict[str, dict] = Field(default_factory=dict)
    role_changes: RoleChanges | None = None


class UserStatusResponse(BaseModel):
    user: UserPublic
    changed: bool
    message: str | None = None


class PasswordResetResponse(BaseModel):
    user_id: int
    temporary_password: str = Field(..., description="临时密码，仅此时显示一次")
    expires_at: datetime
    requires_password_change: bool = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class UserListResponse(BaseModel):
    users: list[UserWithRoles]
    pagination: Pagination
