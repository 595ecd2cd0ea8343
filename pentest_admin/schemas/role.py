"""角色相关的响应模型"""

from pydantic import BaseModel


class PermissionInfo(BaseModel):
    id: int
    name: str
    display_name: str
    category: str


class RoleInfo(BaseModel):
    id: int
    name: str
    display_name: str
    description: str | None = None
    is_system: bool
    permissions: list[PermissionInfo]
    user_count: int


class RoleListResponse(BaseModel):
    roles: list[RoleInfo]
