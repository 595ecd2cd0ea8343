"""
认证服务：登录、登出、修改密码

登录失败统一返回同一条错误信息，不暴露用户名是否存在；
每次失败都在独立事务中写一条 login_failed 审计，带失败原因。
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pentest_admin.auth.password import (
    hash_password,
    validate_password,
    verify_dummy_password,
    verify_password,
)
from pentest_admin.auth.rate_limit import BaseRateLimiter, login_rate_key
from pentest_admin.db.session import transaction
from pentest_admin.exceptions import (
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from pentest_admin.infra.logging import get_logger
from pentest_admin.models import User
from pentest_admin.models.mixins import as_utc, utcnow
from pentest_admin.services.audit import record_audit_log
from pentest_admin.services.user import AuditContext

logger = get_logger(__name__)

RESOURCE_AUTH = "auth"
INVALID_CREDENTIALS = "Invalid username or password"


@dataclass
class LoginResult:
    user: dict[str, Any]
    requires_password_change: bool


async def get_current_user(session: AsyncSession, user_id: int | None) -> User | None:
    """当前会话对应的激活用户，不存在或已停用返回 None"""
    if user_id is None:
        return None
    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


class AuthService:
    """登录相关操作"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rate_limiter: BaseRateLimiter | None = None,
    ) -> None:
        self._factory = session_factory
        self._rate_limiter = rate_limiter

    async def _audit(
        self,
        *,
        action: str,
        user_id: int | None,
        changes: dict[str, Any],
        ctx: AuditContext,
    ) -> None:
        """独立事务写入一条认证审计"""
        try:
            async with transaction(self._factory) as tx:
                await record_audit_log(
                    tx,
                    user_id=user_id,
                    action=action,
                    resource_type=RESOURCE_AUTH,
                    resource_id=user_id,
                    changes=changes,
                    ip_address=ctx.ip_address,
                    user_agent=ctx.user_agent,
                )
        except Exception:
            logger.exception(f"认证审计写入失败: {action}")

    async def _fail_login(
        self,
        identifier: str,
        reason: str,
        ctx: AuditContext,
        user_id: int | None = None,
    ) -> None:
        logger.warning(f"登录失败: {identifier} ({reason})", extra={"login_reason": reason})
        await self._audit(
            action="login_failed",
            user_id=user_id,
            changes={
                "reason": reason,
                "username": identifier,
                "ip_address": ctx.ip_address,
                "user_agent": ctx.user_agent,
                "timestamp": utcnow(),
            },
            ctx=ctx,
        )

    async def login(self, identifier: str, password: str, ctx: AuditContext) -> LoginResult:
        """
        用户名或邮箱登录

        Raises:
            RateLimitError: 同一 IP + 账号尝试过于频繁
            AuthenticationError: 用户不存在、已停用、密码错误、临时密码过期
        """
        identifier = identifier.strip()
        rate_key = login_rate_key(ctx.ip_address, identifier)
        if self._rate_limiter is not None and not self._rate_limiter.allow(rate_key):
            await self._fail_login(identifier, "rate_limited", ctx)
            raise RateLimitError()

        async with self._factory() as session:
            result = await session.execute(
                select(User).where(
                    or_(User.username == identifier, User.email == identifier.lower())
                )
            )
            user = result.scalars().first()

        if user is None or not user.is_active:
            await verify_dummy_password(password)
            await self._fail_login(
                identifier, "user_not_found" if user is None else "user_inactive", ctx
            )
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not await verify_password(password, user.password_hash):
            await self._fail_login(identifier, "invalid_password", ctx, user_id=user.id)
            raise AuthenticationError(INVALID_CREDENTIALS)

        expires_at = as_utc(user.password_expires_at)
        if user.must_change_password and expires_at is not None and expires_at <= utcnow():
            await self._fail_login(identifier, "temporary_password_expired", ctx, user_id=user.id)
            raise AuthenticationError("Temporary password has expired, contact an administrator")

        async with transaction(self._factory) as tx:
            db_user = await tx.get(User, user.id)
            db_user.last_login_at = utcnow()
            await record_audit_log(
                tx,
                user_id=db_user.id,
                action="login_success",
                resource_type=RESOURCE_AUTH,
                resource_id=db_user.id,
                changes={
                    "username": db_user.username,
                    "requires_password_change": db_user.must_change_password,
                    "timestamp": utcnow(),
                },
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
            await tx.flush()
            login_result = LoginResult(
                user=db_user.to_safe_dict(),
                requires_password_change=db_user.must_change_password,
            )

        if self._rate_limiter is not None:
            self._rate_limiter.reset(rate_key)
        logger.info(f"登录成功: {login_result.user['username']}")
        return login_result

    async def logout(self, user_id: int | None, ctx: AuditContext) -> None:
        """登出审计，未登录时什么都不写"""
        if user_id is None:
            return
        async with transaction(self._factory) as tx:
            await record_audit_log(
                tx,
                user_id=user_id,
                action="logout",
                resource_type=RESOURCE_AUTH,
                resource_id=user_id,
                changes={"timestamp": utcnow()},
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )

    async def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        ctx: AuditContext,
    ) -> None:
        """
        用户修改自己的密码，成功后清除强制改密标记

        Raises:
            NotFoundError: 用户不存在或已停用
            AuthenticationError: 当前密码错误
            ValidationError: 新密码不满足复杂度，或与当前密码相同
        """
        try:
            async with transaction(self._factory) as tx:
                user = await tx.get(User, user_id)
                if user is None or not user.is_active:
                    raise NotFoundError("User")
                if not await verify_password(current_password, user.password_hash):
                    raise AuthenticationError("Current password is incorrect")

                is_valid, messages = validate_password(new_password)
                if not is_valid:
                    raise ValidationError("Password does not meet complexity requirements",
                                          {"new_password": "; ".join(messages)})
                if new_password == current_password:
                    raise ValidationError("New password must differ from the current password",
                                          {"new_password": "New password must differ from the current password"})

                user.password_hash = await hash_password(new_password)
                user.must_change_password = False
                user.password_expires_at = None

                await record_audit_log(
                    tx,
                    user_id=user.id,
                    action="password_changed",
                    resource_type=RESOURCE_AUTH,
                    resource_id=user.id,
                    changes={"timestamp": utcnow()},
                    ip_address=ctx.ip_address,
                    user_agent=ctx.user_agent,
                )
        except Exception as exc:
            await self._audit(
                action="password_change_failed",
                user_id=user_id,
                changes={"error": str(exc), "timestamp": utcnow()},
                ctx=ctx,
            )
            raise
