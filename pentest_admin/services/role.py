"""角色查询服务"""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pentest_admin.models import Permission, Role, RolePermission, UserRole


async def get_assignable_roles(
    session: AsyncSession,
    *,
    include_system: bool = False,
) -> list[dict[str, Any]]:
    """
    角色列表（含权限和用户数）

    默认只返回可通过用户管理接口分配的非系统角色。
    """
    query = select(Role).order_by(Role.id)
    if not include_system:
        query = query.where(Role.is_system.is_(False))
    roles = list((await session.execute(query)).scalars().all())
    if not roles:
        return []

    role_ids = [r.id for r in roles]
    permissions: dict[int, list[dict[str, Any]]] = {rid: [] for rid in role_ids}
    rows = await session.execute(
        select(RolePermission.role_id, Permission)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .where(RolePermission.role_id.in_(role_ids))
        .order_by(Permission.category, Permission.name)
    )
    for role_id, perm in rows.all():
        permissions[role_id].append({
            "id": perm.id,
            "name": perm.name,
            "display_name": perm.display_name,
            "category": perm.category,
        })

    counts = dict(
        (
            await session.execute(
                select(UserRole.role_id, func.count(UserRole.user_id))
                .where(UserRole.role_id.in_(role_ids))
                .group_by(UserRole.role_id)
            )
        ).all()
    )

    return [
        {
            "id": r.id,
            "name": r.name,
            "display_name": r.display_name,
            "description": r.description,
            "is_system": r.is_system,
            "permissions": permissions[r.id],
            "user_count": counts.get(r.id, 0),
        }
        for r in roles
    ]
