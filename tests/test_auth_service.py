"""
认证服务测试

测试 pentest_admin/services/auth.py：
- 登录成功/失败及 login_failed 审计原因
- 临时密码过期
- 登录限流
- 修改密码、登出
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from conftest import ADMIN_PASSWORD, TEST_CTX
from pentest_admin.auth.rate_limit import MemoryRateLimiter, login_rate_key
from pentest_admin.db.session import transaction
from pentest_admin.exceptions import (
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from pentest_admin.models import AuditLog, User
from pentest_admin.models.mixins import utcnow
from pentest_admin.services.auth import INVALID_CREDENTIALS, AuthService, get_current_user
from pentest_admin.services.user import CreateUserData, UserLifecycleService


async def _logs(session_factory, action: str) -> list[AuditLog]:
    async with session_factory() as session:
        result = await session.execute(
            select(AuditLog).where(AuditLog.action == action).order_by(AuditLog.id)
        )
        return list(result.scalars().all())


@pytest.fixture
def auth_service(session_factory):
    return AuthService(session_factory, MemoryRateLimiter(window_seconds=60, max_requests=100))


@pytest.fixture
def create_user(session_factory, admin_id, role_ids):
    async def _create(username: str = "alice"):
        return await UserLifecycleService(session_factory).create_user(
            admin_id,
            CreateUserData(
                email=f"{username}@example.com",
                username=username,
                role_ids=[role_ids["penetration_tester"]],
            ),
            TEST_CTX,
        )

    return _create


class TestLogin:
    """测试登录"""

    @pytest.mark.asyncio
    async def test_login_success(self, auth_service, session_factory, admin_id):
        result = await auth_service.login("admin", ADMIN_PASSWORD, TEST_CTX)

        assert result.user["id"] == admin_id
        assert result.requires_password_change is False
        assert "password_hash" not in result.user
        assert result.user["last_login_at"] is not None

        logs = await _logs(session_factory, "login_success")
        assert len(logs) == 1
        assert logs[0].user_id == admin_id
        assert logs[0].resource_type == "auth"

    @pytest.mark.asyncio
    async def test_login_with_email(self, auth_service, admin_id):
        result = await auth_service.login("ADMIN@pentest.local", ADMIN_PASSWORD, TEST_CTX)
        assert result.user["id"] == admin_id

    @pytest.mark.asyncio
    async def test_wrong_password(self, auth_service, session_factory, admin_id):
        """密码错误：统一错误信息，审计记录失败原因"""
        with pytest.raises(AuthenticationError) as exc_info:
            await auth_service.login("admin", "Wrong@Pass1", TEST_CTX)
        assert exc_info.value.message == INVALID_CREDENTIALS

        logs = await _logs(session_factory, "login_failed")
        assert len(logs) == 1
        assert logs[0].user_id == admin_id
        assert logs[0].changes["reason"] == "invalid_password"
        assert logs[0].changes["username"] == "admin"
        assert logs[0].ip_address == "10.0.0.1"
        assert "Wrong@Pass1" not in str(logs[0].changes)
        assert await _logs(session_factory, "login_success") == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, auth_service, session_factory, seeded):
        with pytest.raises(AuthenticationError) as exc_info:
            await auth_service.login("ghost", "whatever", TEST_CTX)
        assert exc_info.value.message == INVALID_CREDENTIALS

        logs = await _logs(session_factory, "login_failed")
        assert logs[0].user_id is None
        assert logs[0].changes["reason"] == "user_not_found"

    @pytest.mark.asyncio
    async def test_inactive_user(self, auth_service, create_user, session_factory, admin_id):
        created = await create_user()
        await UserLifecycleService(session_factory).deactivate_user(
            admin_id, created.user["id"], None, TEST_CTX
        )

        with pytest.raises(AuthenticationError) as exc_info:
            await auth_service.login("alice", created.temporary_password, TEST_CTX)
        assert exc_info.value.message == INVALID_CREDENTIALS
        logs = await _logs(session_factory, "login_failed")
        assert logs[0].changes["reason"] == "user_inactive"

    @pytest.mark.asyncio
    async def test_temporary_password_requires_change(self, auth_service, create_user):
        created = await create_user()
        result = await auth_service.login("alice", created.temporary_password, TEST_CTX)
        assert result.requires_password_change is True

    @pytest.mark.asyncio
    async def test_expired_temporary_password(self, auth_service, create_user, session_factory):
        created = await create_user()
        async with transaction(session_factory) as tx:
            user = await tx.get(User, created.user["id"])
            user.password_expires_at = utcnow() - timedelta(minutes=1)

        with pytest.raises(AuthenticationError):
            await auth_service.login("alice", created.temporary_password, TEST_CTX)
        logs = await _logs(session_factory, "login_failed")
        assert logs[0].changes["reason"] == "temporary_password_expired"


class TestLoginTiming:
    """账号不存在或已停用时同样做一次密码校验"""

    @pytest.mark.asyncio
    async def test_unknown_user_runs_dummy_check(self, auth_service, seeded):
        with patch(
            "pentest_admin.services.auth.verify_dummy_password", new_callable=AsyncMock
        ) as dummy:
            with pytest.raises(AuthenticationError):
                await auth_service.login("ghost", "Whatever@123", TEST_CTX)
        dummy.assert_awaited_once_with("Whatever@123")

    @pytest.mark.asyncio
    async def test_inactive_user_runs_dummy_check(self, auth_service, create_user, session_factory, admin_id):
        created = await create_user()
        await UserLifecycleService(session_factory).deactivate_user(
            admin_id, created.user["id"], None, TEST_CTX
        )

        with patch(
            "pentest_admin.services.auth.verify_dummy_password", new_callable=AsyncMock
        ) as dummy:
            with pytest.raises(AuthenticationError):
                await auth_service.login("alice", created.temporary_password, TEST_CTX)
        dummy.assert_awaited_once_with(created.temporary_password)

    @pytest.mark.asyncio
    async def test_existing_user_skips_dummy_check(self, auth_service, seeded):
        with patch(
            "pentest_admin.services.auth.verify_dummy_password", new_callable=AsyncMock
        ) as dummy:
            with pytest.raises(AuthenticationError):
                await auth_service.login("admin", "Wrong@Pass1", TEST_CTX)
        dummy.assert_not_awaited()


class TestLoginRateLimit:
    """测试登录限流"""

    @pytest.mark.asyncio
    async def test_rate_limited(self, session_factory, seeded):
        service = AuthService(session_factory, MemoryRateLimiter(window_seconds=60, max_requests=2))
        for _ in range(2):
            with pytest.raises(AuthenticationError):
                await service.login("admin", "Wrong@Pass1", TEST_CTX)

        # 超限后即使密码正确也拒绝
        with pytest.raises(RateLimitError):
            await service.login("admin", ADMIN_PASSWORD, TEST_CTX)

        reasons = [log.changes["reason"] for log in await _logs(session_factory, "login_failed")]
        assert reasons == ["invalid_password", "invalid_password", "rate_limited"]

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, session_factory, seeded):
        limiter = MemoryRateLimiter(window_seconds=60, max_requests=2)
        service = AuthService(session_factory, limiter)
        with pytest.raises(AuthenticationError):
            await service.login("admin", "Wrong@Pass1", TEST_CTX)
        await service.login("admin", ADMIN_PASSWORD, TEST_CTX)

        key = login_rate_key(TEST_CTX.ip_address, "admin")
        assert limiter.allow(key)
        assert limiter.allow(key)

    @pytest.mark.asyncio
    async def test_without_limiter(self, session_factory, admin_id):
        service = AuthService(session_factory)
        result = await service.login("admin", ADMIN_PASSWORD, TEST_CTX)
        assert result.user["id"] == admin_id


class TestChangePassword:
    """测试修改密码"""

    @pytest.mark.asyncio
    async def test_change_clears_flag(self, auth_service, create_user, session_factory):
        created = await create_user()
        user_id = created.user["id"]

        await auth_service.change_password(user_id, created.temporary_password, "N3w!Password", TEST_CTX)

        async with session_factory() as session:
            user = await session.get(User, user_id)
        assert user.must_change_password is False
        assert user.password_expires_at is None
        result = await auth_service.login("alice", "N3w!Password", TEST_CTX)
        assert result.requires_password_change is False
        assert len(await _logs(session_factory, "password_changed")) == 1

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, auth_service, session_factory, admin_id):
        with pytest.raises(AuthenticationError):
            await auth_service.change_password(admin_id, "Wrong@Pass1", "N3w!Password", TEST_CTX)
        failures = await _logs(session_factory, "password_change_failed")
        assert len(failures) == 1
        assert failures[0].user_id == admin_id

    @pytest.mark.asyncio
    async def test_weak_new_password(self, auth_service, admin_id):
        with pytest.raises(ValidationError) as exc_info:
            await auth_service.change_password(admin_id, ADMIN_PASSWORD, "weak", TEST_CTX)
        assert "new_password" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_same_password_rejected(self, auth_service, admin_id):
        with pytest.raises(ValidationError):
            await auth_service.change_password(admin_id, ADMIN_PASSWORD, ADMIN_PASSWORD, TEST_CTX)

    @pytest.mark.asyncio
    async def test_unknown_user(self, auth_service, seeded):
        with pytest.raises(NotFoundError):
            await auth_service.change_password(9999, "x", "N3w!Password", TEST_CTX)


class TestLogoutAndCurrentUser:
    @pytest.mark.asyncio
    async def test_logout_writes_audit(self, auth_service, session_factory, admin_id):
        await auth_service.logout(admin_id, TEST_CTX)
        logs = await _logs(session_factory, "logout")
        assert len(logs) == 1
        assert logs[0].user_id == admin_id

    @pytest.mark.asyncio
    async def test_anonymous_logout_is_silent(self, auth_service, session_factory, seeded):
        await auth_service.logout(None, TEST_CTX)
        assert await _logs(session_factory, "logout") == []

    @pytest.mark.asyncio
    async def test_get_current_user(self, session_factory, create_user, admin_id):
        created = await create_user()
        await UserLifecycleService(session_factory).deactivate_user(
            admin_id, created.user["id"], None, TEST_CTX
        )
        async with session_factory() as session:
            assert (await get_current_user(session, admin_id)).username == "admin"
            assert await get_current_user(session, None) is None
            assert await get_current_user(session, 9999) is None
            assert await get_current_user(session, created.user["id"]) is None
