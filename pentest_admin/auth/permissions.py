"""
权限解析

权限名形如 resource.action。用户的有效权限 = 其所有角色权限的并集；
角色持有 resource.* 时视为拥有该资源下的任意权限。

每次判断都实时查库，不做缓存：角色变更在下一次请求立即生效。
只有激活用户才解析出权限，停用用户、不存在的用户、未登录一律为空。
所有公开方法都是失败关闭的：查库出错时返回 False / 空集合，从不抛异常。

使用示例：
    resolver = PermissionResolver(db)
    if await resolver.check_permission(user_id, PERMISSIONS.USER_READ):
        ...
"""

from collections.abc import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pentest_admin.auth.fail_closed import fail_closed
from pentest_admin.models import Permission, RolePermission, User, UserRole

WILDCARD_ACTION = "*"


class PERMISSIONS:
    """权限名常量"""

    PROJECT_CREATE = "project.create"
    PROJECT_READ = "project.read"
    PROJECT_UPDATE = "project.update"
    PROJECT_DELETE = "project.delete"
    PROJECT_ASSIGN_USERS = "project.assign_users"

    VULNERABILITY_CREATE = "vulnerability.create"
    VULNERABILITY_READ = "vulnerability.read"
    VULNERABILITY_UPDATE = "vulnerability.update"
    VULNERABILITY_DELETE = "vulnerability.delete"
    VULNERABILITY_APPROVE = "vulnerability.approve"

    REPORT_CREATE = "report.create"
    REPORT_READ = "report.read"
    REPORT_UPDATE = "report.update"
    REPORT_EXPORT = "report.export"
    REPORT_PUBLISH = "report.publish"

    USER_CREATE = "user.create"
    USER_READ = "user.read"
    USER_UPDATE = "user.update"
    USER_DELETE = "user.delete"
    USER_MANAGE = "user.manage"
    USER_MANAGE_ROLES = "user.manage_roles"

    SYSTEM_AUDIT = "system.audit"
    SYSTEM_SETTINGS = "system.settings"


class ROLES:
    """内置角色名"""

    SYSTEM_ADMIN = "system_admin"
    SECURITY_MANAGER = "security_manager"
    PENETRATION_TESTER = "penetration_tester"
    DEVELOPER = "developer"


def resource_prefix(permission_name: str) -> str:
    """第一个 . 之前的部分"""
    return permission_name.split(".", 1)[0]


def permission_matches(granted: Iterable[str], permission_name: str) -> bool:
    """granted 中包含该权限本身或其资源通配符"""
    granted = granted if isinstance(granted, (set, frozenset)) else set(granted)
    if permission_name in granted:
        return True
    return f"{resource_prefix(permission_name)}.{WILDCARD_ACTION}" in granted


class PermissionResolver:
    """基于数据库的权限解析器，绑定一个数据库会话"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _load_permissions(self, user_id: int | None) -> set[str]:
        if user_id is None:
            return set()
        # 用户 → 角色 → 权限，一次查询；is_active 条件让停用用户直接得到空集
        stmt = (
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(UserRole, UserRole.role_id == RolePermission.role_id)
            .join(User, User.id == UserRole.user_id)
            .where(User.id == user_id, User.is_active.is_(True))
            .distinct()
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    @fail_closed(lambda self, user_id: set())
    async def resolve_user_permissions(self, user_id: int | None) -> set[str]:
        """用户的有效权限集合"""
        return await self._load_permissions(user_id)

    @fail_closed(lambda self, user_id, permission_name: False)
    async def check_permission(self, user_id: int | None, permission_name: str) -> bool:
        """单个权限判断，支持 resource.* 通配"""
        granted = await self._load_permissions(user_id)
        return permission_matches(granted, permission_name)

    @fail_closed(lambda self, user_id, permission_names: {name: False for name in permission_names})
    async def check_multiple_permissions(
        self,
        user_id: int | None,
        permission_names: Sequence[str],
    ) -> dict[str, bool]:
        """
        批量权限判断

        只解析一次权限集合；每个请求的权限名都有对应结果，
        未登录或出错时全部为 False。
        """
        granted = await self._load_permissions(user_id)
        return {name: permission_matches(granted, name) for name in permission_names}

    @fail_closed(lambda self, user_id: [])
    async def get_user_permissions(self, user_id: int | None) -> list[str]:
        """排序后的有效权限列表"""
        return sorted(await self._load_permissions(user_id))
