"""
请求门禁中间件

按路径决定是否需要登录，并做滑动续期：

    /                       已登录 → /dashboard，未登录 → /auth/login
    /auth/login, /register  已登录 → /dashboard
    /auth, /api/auth,
    /api/health, 文档       公开
    /dashboard, /api        需要登录：API 返回 401，页面跳转登录页并带 callbackUrl

已登录用户的受保护 GET 请求成功后重新签发令牌（续期失败只记日志）。
校验失败的 Cookie 会在响应中删除。这里只判断令牌本身，
账号是否仍然激活由路由依赖在每次请求时查库判断。
"""

from typing import Callable
from urllib.parse import quote

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from pentest_admin.auth.session import SessionManager, get_session_manager
from pentest_admin.infra.logging import get_logger, set_actor_id

logger = get_logger(__name__)

LOGIN_PATH = "/auth/login"
HOME_PATH = "/dashboard"

AUTH_PAGES = ("/auth/login", "/auth/register")
PUBLIC_PREFIXES = ("/auth", "/api/auth", "/api/health", "/docs", "/redoc", "/openapi.json")
PROTECTED_PREFIXES = ("/dashboard", "/api")


def _match(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path == p or path.startswith(p + "/") for p in prefixes)


def is_auth_page(path: str) -> bool:
    return _match(path, AUTH_PAGES)


def is_public_path(path: str) -> bool:
    return _match(path, PUBLIC_PREFIXES)


def is_protected_path(path: str) -> bool:
    """公开前缀优先于受保护前缀（/api/auth 属于 /api 但公开）"""
    return not is_public_path(path) and _match(path, PROTECTED_PREFIXES)


def _sets_cookie(response: Response, cookie_name: str) -> bool:
    """路由自己已经写了会话 Cookie（登录/登出），门禁不再覆盖"""
    prefix = f"{cookie_name}=".encode("latin-1")
    return any(
        key == b"set-cookie" and value.startswith(prefix)
        for key, value in response.raw_headers
    )


class AuthGateMiddleware(BaseHTTPMiddleware):
    """会话门禁"""

    def __init__(self, app, session_manager: SessionManager | None = None) -> None:
        super().__init__(app)
        self._session_manager = session_manager

    @property
    def session_manager(self) -> SessionManager:
        if self._session_manager is None:
            self._session_manager = get_session_manager()
        return self._session_manager

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        manager = self.session_manager
        token = request.cookies.get(manager.cookie_name)
        session = manager.read(token)

        request.state.session = session
        request.state.user_id = session.user_id if session else None
        set_actor_id(request.state.user_id)

        path = request.url.path
        if path == "/":
            response: Response = RedirectResponse(HOME_PATH if session else LOGIN_PATH)
        elif session is not None and is_auth_page(path):
            response = RedirectResponse(HOME_PATH)
        elif session is None and is_protected_path(path):
            if _match(path, ("/api",)):
                response = JSONResponse(
                    status_code=401,
                    content={"detail": "Authentication required", "code": "UNAUTHENTICATED"},
                )
            else:
                response = RedirectResponse(f"{LOGIN_PATH}?callbackUrl={quote(path, safe='')}")
        else:
            response = await call_next(request)
            if (
                session is not None
                and request.method == "GET"
                and is_protected_path(path)
                and response.status_code < 400
                and not _sets_cookie(response, manager.cookie_name)
            ):
                try:
                    manager.set_cookie(response, manager.refresh(session))
                except Exception:
                    logger.warning("会话续期失败，本次不延长有效期", exc_info=True)

        # 令牌存在但校验失败：删除，避免每次请求重复校验
        if token and session is None and not _sets_cookie(response, manager.cookie_name):
            manager.clear(response)

        return response
