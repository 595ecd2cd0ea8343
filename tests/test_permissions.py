"""
权限解析测试

测试 pentest_admin/auth/permissions.py 与 auth/fail_closed.py：
- 权限匹配与资源通配符
- 基于数据库的有效权限解析（停用用户、角色变更实时生效）
- 出错时失败关闭
"""

from unittest.mock import AsyncMock

import pytest

from conftest import TEST_CTX
from pentest_admin.auth.fail_closed import attempt_or_default, fail_closed
from pentest_admin.auth.permissions import (
    PERMISSIONS,
    PermissionResolver,
    permission_matches,
    resource_prefix,
)
from pentest_admin.db.session import transaction
from pentest_admin.models import Permission, RolePermission
from pentest_admin.services.bootstrap import ROLE_PERMISSIONS
from pentest_admin.services.user import (
    CreateUserData,
    UpdateUserRolesData,
    UserLifecycleService,
)


class TestPermissionMatches:
    """测试权限名匹配"""

    def test_resource_prefix(self):
        assert resource_prefix("user.read") == "user"
        assert resource_prefix("report.export.pdf") == "report"

    def test_exact(self):
        assert permission_matches({"user.read"}, "user.read")
        assert not permission_matches({"user.read"}, "user.update")

    def test_wildcard(self):
        assert permission_matches({"user.*"}, "user.delete")
        assert not permission_matches({"user.*"}, "project.read")

    def test_accepts_list(self):
        assert permission_matches(["project.read"], "project.read")

    def test_empty(self):
        assert not permission_matches(set(), "user.read")


class TestFailClosed:
    """测试失败关闭边界"""

    @pytest.mark.asyncio
    async def test_attempt_or_default_success(self):
        async def op():
            return {"a"}

        assert await attempt_or_default(op, set, "op") == {"a"}

    @pytest.mark.asyncio
    async def test_attempt_or_default_value(self):
        async def op():
            raise RuntimeError("db down")

        assert await attempt_or_default(op, False, "op") is False

    @pytest.mark.asyncio
    async def test_attempt_or_default_factory(self):
        async def op():
            raise RuntimeError("db down")

        result = await attempt_or_default(op, set, "op")
        assert result == set()

    @pytest.mark.asyncio
    async def test_decorator_passes_args_to_default(self):
        @fail_closed(lambda names: {n: False for n in names})
        async def check(names):
            raise RuntimeError("boom")

        assert await check(["a.b", "c.d"]) == {"a.b": False, "c.d": False}


class TestPermissionResolver:
    """测试数据库权限解析"""

    @pytest.mark.asyncio
    async def test_admin_has_all_permissions(self, session_factory, admin_id):
        async with session_factory() as session:
            permissions = await PermissionResolver(session).get_user_permissions(admin_id)
        assert permissions == sorted(ROLE_PERMISSIONS["system_admin"])

    @pytest.mark.asyncio
    async def test_anonymous(self, session_factory, seeded):
        async with session_factory() as session:
            resolver = PermissionResolver(session)
            assert await resolver.resolve_user_permissions(None) == set()
            assert await resolver.check_permission(None, PERMISSIONS.USER_READ) is False
            assert await resolver.check_multiple_permissions(None, ["user.read", "x.y"]) == {
                "user.read": False,
                "x.y": False,
            }

    @pytest.mark.asyncio
    async def test_unknown_user(self, session_factory, seeded):
        async with session_factory() as session:
            assert await PermissionResolver(session).get_user_permissions(9999) == []

    @pytest.mark.asyncio
    async def test_role_change_takes_effect_immediately(self, session_factory, admin_id, role_ids):
        """角色调整后下一次判断立即生效"""
        service = UserLifecycleService(session_factory)
        created = await service.create_user(
            admin_id,
            CreateUserData(email="dev@example.com", username="dev_user", role_ids=[role_ids["developer"]]),
            TEST_CTX,
        )
        user_id = created.user["id"]

        async with session_factory() as session:
            resolver = PermissionResolver(session)
            assert await resolver.check_permission(user_id, PERMISSIONS.SYSTEM_AUDIT)
            assert not await resolver.check_permission(user_id, PERMISSIONS.VULNERABILITY_CREATE)

        await service.update_user_roles(
            admin_id,
            UpdateUserRolesData(user_id=user_id, role_ids=[role_ids["penetration_tester"]]),
            TEST_CTX,
        )

        async with session_factory() as session:
            resolver = PermissionResolver(session)
            assert not await resolver.check_permission(user_id, PERMISSIONS.SYSTEM_AUDIT)
            assert await resolver.check_permission(user_id, PERMISSIONS.VULNERABILITY_CREATE)

    @pytest.mark.asyncio
    async def test_inactive_user_has_no_permissions(self, session_factory, admin_id, role_ids):
        service = UserLifecycleService(session_factory)
        created = await service.create_user(
            admin_id,
            CreateUserData(email="t@example.com", username="tester", role_ids=[role_ids["penetration_tester"]]),
            TEST_CTX,
        )
        user_id = created.user["id"]
        await service.deactivate_user(admin_id, user_id, "left the team", TEST_CTX)

        async with session_factory() as session:
            resolver = PermissionResolver(session)
            assert await resolver.get_user_permissions(user_id) == []
            assert await resolver.check_permission(user_id, PERMISSIONS.PROJECT_READ) is False

    @pytest.mark.asyncio
    async def test_wildcard_permission(self, session_factory, admin_id, role_ids):
        """角色持有 resource.* 时覆盖该资源的全部操作"""
        async with transaction(session_factory) as tx:
            wildcard = Permission(name="report.*", display_name="全部报告权限", category="report")
            tx.add(wildcard)
            await tx.flush()
            tx.add(RolePermission(role_id=role_ids["developer"], permission_id=wildcard.id))

        service = UserLifecycleService(session_factory)
        created = await service.create_user(
            admin_id,
            CreateUserData(email="w@example.com", username="wild", role_ids=[role_ids["developer"]]),
            TEST_CTX,
        )
        async with session_factory() as session:
            results = await PermissionResolver(session).check_multiple_permissions(
                created.user["id"], ["report.publish", "report.export", "user.create"]
            )
        assert results == {"report.publish": True, "report.export": True, "user.create": False}

    @pytest.mark.asyncio
    async def test_database_error_fails_closed(self):
        session = AsyncMock()
        session.execute.side_effect = RuntimeError("connection lost")
        resolver = PermissionResolver(session)

        assert await resolver.check_permission(1, PERMISSIONS.USER_READ) is False
        assert await resolver.resolve_user_permissions(1) == set()
        assert await resolver.get_user_permissions(1) == []
        assert await resolver.check_multiple_permissions(1, ["user.read", "user.create"]) == {
            "user.read": False,
            "user.create": False,
        }
