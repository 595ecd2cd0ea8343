"""
测试公共夹具

- 环境变量必须在导入 pentest_admin 之前设置（配置在导入时读取并缓存）
- 每个测试使用 tmp_path 下独立的 SQLite 文件库，测试之间互不影响
- HTTP 测试通过 dependency_overrides 把会话工厂和登录限流器替换为测试实例
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["AUTH_SECRET"] = "test-auth-secret-0123456789-abcdefghijklmnop"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ.pop("REDIS_URL", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from pentest_admin.api.deps import get_login_rate_limiter_dep
from pentest_admin.auth.rate_limit import MemoryRateLimiter
from pentest_admin.db.session import get_session_factory, init_models
from pentest_admin.models import Role
from pentest_admin.services.bootstrap import ADMIN_USERNAME, seed_rbac
from pentest_admin.services.user import AuditContext

ADMIN_PASSWORD = "Admin@123456"
TEST_CTX = AuditContext(ip_address="10.0.0.1", user_agent="pytest")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """写入内置权限、角色和管理员，返回 SeedSummary"""
    return await seed_rbac(session_factory, ADMIN_PASSWORD)


@pytest_asyncio.fixture
async def role_ids(session_factory, seeded) -> dict[str, int]:
    """角色名 -> 角色 ID"""
    async with session_factory() as session:
        roles = (await session.execute(select(Role))).scalars().all()
    return {r.name: r.id for r in roles}


@pytest.fixture
def admin_id(seeded) -> int:
    return seeded.admin_user_id


@pytest.fixture
def app(session_factory):
    from pentest_admin.main import app

    limiter = MemoryRateLimiter(window_seconds=60, max_requests=100)
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_login_rate_limiter_dep] = lambda: limiter
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as c:
        yield c


async def login(client: AsyncClient, username: str, password: str):
    return await client.post("/api/auth/login", json={"username": username, "password": password})


@pytest_asyncio.fixture
async def admin_client(client, seeded):
    """已用初始管理员登录的客户端"""
    resp = await login(client, ADMIN_USERNAME, ADMIN_PASSWORD)
    assert resp.status_code == 200, resp.text
    return client
