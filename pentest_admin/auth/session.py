"""
会话令牌管理

令牌内容只有 {"user": {"id": <int>}, "expires": <ISO-8601 UTC>}，
使用 HMAC-SHA256（JWT HS256）签名。SessionManager 对账号状态无感知，
用户是否仍处于激活状态由权限解析层在每次请求时实时判断。

Cookie 约定：
- 名称 session（可配置），HttpOnly，SameSite=Lax，路径 /
- 生产环境附加 Secure

使用示例：
    manager = get_session_manager()
    token = manager.issue(user.id)
    manager.set_cookie(response, token)

    session = manager.read(request.cookies.get(manager.cookie_name))
    if session is None:
        ...  # 未登录
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import jwt
from starlette.responses import Response

from pentest_admin.config import get_settings, validate_auth_config
from pentest_admin.infra.logging import get_logger
from pentest_admin.models.mixins import utcnow

logger = get_logger(__name__)

ALGORITHM = "HS256"


class SessionError(Exception):
    """会话令牌校验失败"""


class InvalidSessionError(SessionError):
    """令牌格式错误或签名不匹配"""


class SessionExpiredError(SessionError):
    """令牌已过期"""


@dataclass(frozen=True)
class SessionData:
    """解析后的会话"""
    user_id: int
    expires: datetime


class SessionManager:
    """
    签发、校验、续期、清除会话令牌

    密钥由构造参数注入，本类不读取环境变量。
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl: timedelta = timedelta(hours=24),
        secure: bool = False,
        cookie_name: str = "session",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret = secret
        self.ttl = ttl
        self.secure = secure
        self.cookie_name = cookie_name
        self._clock = clock

    def issue(self, user_id: int) -> str:
        """签发新令牌，有效期为 ttl"""
        expires = self._clock() + self.ttl
        payload = {
            "user": {"id": user_id},
            "expires": expires.isoformat(),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> SessionData:
        """
        校验令牌

        Raises:
            InvalidSessionError: 格式错误、签名不匹配、内容结构不对
            SessionExpiredError: expires 不晚于当前时间
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except jwt.InvalidTokenError as e:
            raise InvalidSessionError(str(e)) from e

        user = payload.get("user")
        user_id = user.get("id") if isinstance(user, dict) else None
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise InvalidSessionError("session payload has no integer user id")

        raw_expires = payload.get("expires")
        if not isinstance(raw_expires, str):
            raise InvalidSessionError("session payload has no expiry")
        try:
            expires = datetime.fromisoformat(raw_expires)
        except ValueError as e:
            raise InvalidSessionError(f"invalid expiry: {raw_expires}") from e
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)

        if expires <= self._clock():
            raise SessionExpiredError(f"session expired at {raw_expires}")

        return SessionData(user_id=user_id, expires=expires)

    def read(self, token: str | None) -> SessionData | None:
        """
        校验边界：任何失败都视为未登录，从不向外抛异常

        篡改按 WARNING 记录，过期只记 DEBUG。
        """
        if not token:
            return None
        try:
            return self.verify(token)
        except SessionExpiredError:
            logger.debug("会话已过期")
        except InvalidSessionError as e:
            logger.warning(f"会话令牌无效: {e}")
        except Exception:
            logger.warning("会话解析异常，按未登录处理", exc_info=True)
        return None

    def refresh(self, session: SessionData) -> str:
        """用同一用户 ID 重新签发，有效期重新计算"""
        return self.issue(session.user_id)

    def set_cookie(self, response: Response, token: str) -> None:
        """把令牌写入会话 Cookie"""
        max_age = int(self.ttl.total_seconds())
        response.set_cookie(
            key=self.cookie_name,
            value=token,
            max_age=max_age,
            expires=max_age,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )

    def clear(self, response: Response) -> None:
        """删除会话 Cookie，没有会话时调用也安全"""
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )


@lru_cache(maxsize=1)
def get_session_manager() -> SessionManager:
    """
    获取 SessionManager 单例

    构建时校验 AUTH_SECRET，不合格直接抛出 ConfigError。
    """
    settings = get_settings()
    secret = validate_auth_config(settings)
    return SessionManager(
        secret,
        ttl=timedelta(hours=settings.session_ttl_hours),
        secure=settings.is_production,
        cookie_name=settings.session_cookie_name,
    )
