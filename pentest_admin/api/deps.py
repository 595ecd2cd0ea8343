"""
API 依赖注入函数

所有授权判断都针对"当前会话的用户"：
    get_current_user_id  会话 Cookie → 用户 ID（无效即 None）
    require_user         激活用户，否则 401
    require_active_user  另外要求已完成强制改密，否则 403 PASSWORD_CHANGE_REQUIRED
    require_permission   另外要求持有指定权限，否则 403

使用示例：
    @router.get("/users", dependencies=[Depends(require_permission(PERMISSIONS.USER_READ))])
    async def list_users(db: AsyncSession = Depends(get_db_session)):
        ...
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pentest_admin.auth.permissions import PermissionResolver
from pentest_admin.auth.rate_limit import BaseRateLimiter, get_login_rate_limiter
from pentest_admin.auth.session import SessionManager, get_session_manager
from pentest_admin.db.session import get_db, get_session_factory
from pentest_admin.exceptions import (
    AuthenticationError,
    AuthorizationError,
    PasswordChangeRequiredError,
)
from pentest_admin.models import User
from pentest_admin.services.auth import AuthService, get_current_user
from pentest_admin.services.user import AuditContext, UserLifecycleService

# 重新导出数据库会话获取函数，方便路由模块导入
get_db_session = get_db


def get_session_manager_dep() -> SessionManager:
    """SessionManager 依赖，测试中可通过 dependency_overrides 替换"""
    return get_session_manager()


async def get_current_user_id(
    request: Request,
    manager: SessionManager = Depends(get_session_manager_dep),
) -> int | None:
    """从会话 Cookie 解析用户 ID，任何校验失败都返回 None"""
    session = manager.read(request.cookies.get(manager.cookie_name))
    return session.user_id if session else None


async def require_user(
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """当前激活用户；未登录、用户不存在或已停用都按未登录处理"""
    user = await get_current_user(db, user_id)
    if user is None:
        raise AuthenticationError()
    return user


async def require_active_user(user: User = Depends(require_user)) -> User:
    """临时密码未修改前，除认证接口外一律拒绝"""
    if user.must_change_password:
        raise PasswordChangeRequiredError()
    return user


def require_permission(permission_name: str):
    """生成"要求当前用户持有某权限"的依赖"""

    async def checker(
        user: User = Depends(require_active_user),
        db: AsyncSession = Depends(get_db_session),
    ) -> User:
        if not await PermissionResolver(db).check_permission(user.id, permission_name):
            raise AuthorizationError(permission=permission_name)
        return user

    return checker


def get_audit_context(request: Request) -> AuditContext:
    """
    提取请求来源

    IP 优先级：X-Forwarded-For 第一跳 > X-Real-IP > 连接对端地址
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.headers.get("x-real-ip") or (
            request.client.host if request.client else None
        )
    return AuditContext(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


def get_user_service(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> UserLifecycleService:
    return UserLifecycleService(factory)


def get_login_rate_limiter_dep() -> BaseRateLimiter:
    return get_login_rate_limiter()


def get_auth_service(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    limiter: BaseRateLimiter = Depends(get_login_rate_limiter_dep),
) -> AuthService:
    return AuthService(factory, limiter)
