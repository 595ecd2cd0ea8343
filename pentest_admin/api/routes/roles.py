"""角色接口：列出可分配角色，供用户管理界面选择"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pentest_admin.api.deps import get_db_session, require_permission
from pentest_admin.auth.permissions import PERMISSIONS
from pentest_admin.schemas.role import RoleListResponse
from pentest_admin.services.role import get_assignable_roles

router = APIRouter(
    prefix="/api/roles",
    tags=["roles"],
    dependencies=[Depends(require_permission(PERMISSIONS.USER_MANAGE))],
)


@router.get("", response_model=RoleListResponse)
async def list_roles(
    include_system: bool = Query(False, description="是否包含系统角色"),
    db: AsyncSession = Depends(get_db_session),
) -> RoleListResponse:
    """角色列表（含权限和用户数）"""
    roles = await get_assignable_roles(db, include_system=include_system)
    return RoleListResponse.model_validate({"roles": roles})
