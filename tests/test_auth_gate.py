"""
认证门禁中间件测试

测试 pentest_admin/middleware/auth_gate.py：
- 路径分类
- 未登录访问受保护路径（API 401 / 页面跳转）
- 已登录访问登录页跳转
- 受保护 GET 成功后滑动续期
- 无效 Cookie 被清除
"""

from datetime import timedelta

import pytest

from conftest import TEST_CTX, login
from pentest_admin.auth.session import SessionManager, get_session_manager
from pentest_admin.middleware.auth_gate import is_auth_page, is_protected_path, is_public_path
from pentest_admin.models.mixins import utcnow
from pentest_admin.services.user import CreateUserData, UserLifecycleService


class TestPathClassification:
    """测试路径分类"""

    @pytest.mark.parametrize("path", ["/auth/login", "/auth/register"])
    def test_auth_pages(self, path):
        assert is_auth_page(path)
        assert is_public_path(path)

    @pytest.mark.parametrize(
        "path", ["/api/auth/login", "/api/auth/session", "/api/health", "/docs", "/openapi.json"]
    )
    def test_public(self, path):
        assert is_public_path(path)
        assert not is_protected_path(path)

    @pytest.mark.parametrize("path", ["/dashboard", "/dashboard/users", "/api/users", "/api/audit"])
    def test_protected(self, path):
        assert is_protected_path(path)

    def test_prefix_boundary(self):
        """前缀按路径段匹配"""
        assert not is_public_path("/authors")
        assert not is_protected_path("/apidocs")
        assert not is_protected_path("/dashboards")

    def test_unmatched(self):
        assert not is_public_path("/about")
        assert not is_protected_path("/about")


def _set_cookie_headers(resp) -> list[str]:
    return resp.headers.get_list("set-cookie")


class TestUnauthenticated:
    """测试未登录请求"""

    @pytest.mark.asyncio
    async def test_api_returns_401(self, client):
        resp = await client.get("/api/users")
        assert resp.status_code == 401
        assert resp.json() == {"detail": "Authentication required", "code": "UNAUTHENTICATED"}

    @pytest.mark.asyncio
    async def test_page_redirects_to_login(self, client):
        resp = await client.get("/dashboard/users")
        assert resp.status_code == 307
        assert resp.headers["location"] == "/auth/login?callbackUrl=%2Fdashboard%2Fusers"

    @pytest.mark.asyncio
    async def test_root_redirects_to_login(self, client):
        resp = await client.get("/")
        assert resp.status_code == 307
        assert resp.headers["location"] == "/auth/login"

    @pytest.mark.asyncio
    async def test_public_paths_pass(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

        resp = await client.get("/api/auth/session")
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is False

    @pytest.mark.asyncio
    async def test_garbage_cookie_is_cleared(self, client):
        client.cookies.set("session", "garbage")
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        cookies = _set_cookie_headers(resp)
        assert any(c.startswith("session=") and "Max-Age=0" in c for c in cookies)

    @pytest.mark.asyncio
    async def test_expired_cookie_rejected(self, client, seeded):
        manager = get_session_manager()
        past = SessionManager(
            "test-auth-secret-0123456789-abcdefghijklmnop",
            clock=lambda: utcnow() - timedelta(days=2),
        )
        client.cookies.set(manager.cookie_name, past.issue(seeded.admin_user_id))

        resp = await client.get("/api/users")
        assert resp.status_code == 401
        assert any("Max-Age=0" in c for c in _set_cookie_headers(resp))


class TestAuthenticated:
    """测试已登录请求"""

    @pytest.mark.asyncio
    async def test_root_redirects_to_dashboard(self, admin_client):
        resp = await admin_client.get("/")
        assert resp.status_code == 307
        assert resp.headers["location"] == "/dashboard"

    @pytest.mark.asyncio
    async def test_login_page_redirects_to_dashboard(self, admin_client):
        resp = await admin_client.get("/auth/login")
        assert resp.status_code == 307
        assert resp.headers["location"] == "/dashboard"

    @pytest.mark.asyncio
    async def test_protected_get_refreshes_cookie(self, admin_client):
        resp = await admin_client.get("/api/users")
        assert resp.status_code == 200
        cookies = _set_cookie_headers(resp)
        assert len(cookies) == 1
        assert cookies[0].startswith("session=")
        assert "Max-Age=86400" in cookies[0]

    @pytest.mark.asyncio
    async def test_public_get_does_not_refresh(self, admin_client):
        resp = await admin_client.get("/api/auth/session")
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is True
        assert _set_cookie_headers(resp) == []

    @pytest.mark.asyncio
    async def test_failed_request_does_not_refresh(self, admin_client):
        resp = await admin_client.get("/api/users/9999")
        assert resp.status_code == 404
        assert _set_cookie_headers(resp) == []

    @pytest.mark.asyncio
    async def test_deactivated_user_session_rejected(self, app, client, session_factory, admin_id, role_ids):
        """令牌仍然有效，但账号停用后立即失去访问权限"""
        service = UserLifecycleService(session_factory)
        created = await service.create_user(
            admin_id,
            CreateUserData(email="dev@example.com", username="devuser", role_ids=[role_ids["developer"]]),
            TEST_CTX,
        )
        resp = await login(client, "devuser", created.temporary_password)
        assert resp.status_code == 200

        await service.deactivate_user(admin_id, created.user["id"], None, TEST_CTX)

        resp = await client.get("/api/auth/permissions")
        assert resp.status_code == 401
        resp = await client.get("/api/users")
        assert resp.status_code == 401
        assert _set_cookie_headers(resp) == []
