"""
用户生命周期服务

管理员对用户的写操作：创建、调整角色、重置密码、停用、启用、修改资料。

事务约定：
- 每个操作的前置校验、状态变更、成功审计在同一个事务中，要么全部提交，要么全部回滚
- 任何异常都会回滚该事务，然后在一个新的独立事务里写一条 *_failed 审计，
  最后把原始异常继续抛出；失败审计本身写入失败只记录日志，不覆盖原始异常
- 无变化的调用（角色集合相同、重复停用/启用）不修改任何行，也不写审计

使用示例：
    service = UserLifecycleService(session_factory)
    created = await service.create_user(
        admin_id,
        CreateUserData(email="a@b.com", username="alice", role_ids=[2, 3]),
        AuditContext(ip_address="10.0.0.1", user_agent="Mozilla/5.0"),
    )
    # created.temporary_password 只在这里出现一次
"""

import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pentest_admin.auth.password import generate_secure_password, hash_password
from pentest_admin.config import get_settings
from pentest_admin.db.session import transaction
from pentest_admin.exceptions import ConflictError, NotFoundError, ValidationError
from pentest_admin.infra.logging import get_logger
from pentest_admin.models import Permission, Role, RolePermission, User, UserRole
from pentest_admin.models.mixins import utcnow
from pentest_admin.services.audit import clamp_pagination, record_audit_log

logger = get_logger(__name__)

T = TypeVar("T")

RESOURCE_USER = "user"
DEFAULT_REASON = "未指定"
ALREADY_INACTIVE = "already inactive"
ALREADY_ACTIVE = "already active"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,20}$")
FULL_NAME_MAX_LENGTH = 50

USER_LIST_DEFAULT_LIMIT = 20
USER_LIST_MAX_LIMIT = 100


# ==================== 入参与结果 ====================

@dataclass(frozen=True)
class AuditContext:
    """请求来源，由 HTTP 层从请求中提取"""
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class CreateUserData:
    email: str
    username: str
    full_name: str | None = None
    role_ids: list[int] = field(default_factory=list)


@dataclass
class UpdateUserRolesData:
    user_id: int
    role_ids: list[int]
    reason: str | None = None


@dataclass
class UpdateUserProfileData:
    email: str | None = None
    username: str | None = None
    full_name: str | None = None


@dataclass
class CreatedUser:
    user: dict[str, Any]
    roles: list[dict[str, Any]]
    temporary_password: str
    requires_password_change: bool = True


@dataclass
class RoleUpdateResult:
    user_id: int
    added_roles: list[dict[str, Any]]
    removed_roles: list[dict[str, Any]]
    current_roles: list[dict[str, Any]]
    changed: bool


@dataclass
class PasswordResetResult:
    user_id: int
    temporary_password: str
    expires_at: datetime
    requires_password_change: bool = True


@dataclass
class StatusChangeResult:
    user: dict[str, Any]
    changed: bool
    message: str | None = None


@dataclass
class ProfileUpdateResult:
    user: dict[str, Any]
    changes: dict[str, dict[str, Any]]


# ==================== 通用查询 ====================

def _role_brief(role: Role) -> dict[str, Any]:
    return {"id": role.id, "name": role.name, "display_name": role.display_name}


def _unique_ids(ids: Sequence[int]) -> list[int]:
    """去重并保持顺序"""
    return list(dict.fromkeys(ids))


async def _get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError("User")
    return user


async def _get_user_roles(session: AsyncSession, user_id: int) -> list[Role]:
    result = await session.execute(
        select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
        .order_by(Role.id)
    )
    return list(result.scalars().all())


async def _load_assignable_roles(session: AsyncSession, role_ids: Sequence[int]) -> list[Role]:
    """
    加载可分配角色：全部存在且都不是系统角色

    Raises:
        ValidationError: 错误信息中列出不存在或系统角色的 ID
    """
    if not role_ids:
        return []
    result = await session.execute(select(Role).where(Role.id.in_(role_ids)))
    roles = {r.id: r for r in result.scalars().all()}

    missing = [rid for rid in role_ids if rid not in roles]
    if missing:
        ids = ", ".join(str(rid) for rid in missing)
        raise ValidationError(f"Roles not found: {ids}", {"role_ids": f"Roles not found: {ids}"})

    system = [rid for rid in role_ids if roles[rid].is_system]
    if system:
        ids = ", ".join(str(rid) for rid in system)
        raise ValidationError(
            f"System roles cannot be assigned: {ids}",
            {"role_ids": f"System roles cannot be assigned: {ids}"},
        )
    return [roles[rid] for rid in role_ids]


def _format_errors(
    email: str | None,
    username: str | None,
    full_name: str | None,
) -> dict[str, str]:
    errors: dict[str, str] = {}
    if email is not None and not EMAIL_PATTERN.match(email):
        errors["email"] = "Invalid email format"
    if username is not None and not USERNAME_PATTERN.match(username):
        errors["username"] = "Username must be 3-20 characters of letters, digits, _ or -"
    if full_name is not None and len(full_name) > FULL_NAME_MAX_LENGTH:
        errors["full_name"] = f"Full name must be at most {FULL_NAME_MAX_LENGTH} characters"
    return errors


async def _find_conflict(
    session: AsyncSession,
    email: str | None,
    username: str | None,
    exclude_user_id: int | None = None,
) -> str | None:
    """返回第一个冲突的字段名"""
    for field_name, column, value in (
        ("email", User.email, email),
        ("username", User.username, username),
    ):
        if value is None:
            continue
        query = select(User.id).where(column == value)
        if exclude_user_id is not None:
            query = query.where(User.id != exclude_user_id)
        if (await session.execute(query)).first() is not None:
            return field_name
    return None


def _normalize_email(email: str | None) -> str | None:
    return email.strip().lower() if email is not None else None


# ==================== 只读辅助 ====================

async def get_user_with_details(session: AsyncSession, user_id: int) -> dict[str, Any]:
    """
    用户详情：安全字段 + 角色（含各角色权限）+ 有效权限

    停用用户的有效权限为空，角色照常列出。

    Raises:
        NotFoundError: 用户不存在
    """
    user = await _get_user(session, user_id)
    roles = await _get_user_roles(session, user_id)

    role_permissions: dict[int, list[str]] = {r.id: [] for r in roles}
    if roles:
        result = await session.execute(
            select(RolePermission.role_id, Permission.name)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(RolePermission.role_id.in_(list(role_permissions)))
            .order_by(Permission.name)
        )
        for role_id, name in result.all():
            role_permissions[role_id].append(name)

    effective = sorted({p for names in role_permissions.values() for p in names}) if user.is_active else []

    return {
        **user.to_safe_dict(),
        "roles": [
            {
                **_role_brief(r),
                "description": r.description,
                "is_system": r.is_system,
                "permissions": role_permissions[r.id],
            }
            for r in roles
        ],
        "permissions": effective,
    }


async def list_users(
    session: AsyncSession,
    *,
    page: int = 1,
    limit: int = USER_LIST_DEFAULT_LIMIT,
    search: str | None = None,
    is_active: bool | None = None,
    role_id: int | None = None,
) -> dict[str, Any]:
    """用户列表：按用户名/邮箱/姓名模糊搜索，可按状态和角色筛选"""
    page, limit = clamp_pagination(page, limit, USER_LIST_MAX_LIMIT)

    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                User.username.ilike(pattern),
                User.email.ilike(pattern),
                User.full_name.ilike(pattern),
            )
        )
    if is_active is not None:
        conditions.append(User.is_active.is_(is_active))
    if role_id is not None:
        conditions.append(
            User.id.in_(select(UserRole.user_id).where(UserRole.role_id == role_id))
        )

    total = (
        await session.execute(select(func.count(User.id)).where(*conditions))
    ).scalar() or 0
    result = await session.execute(
        select(User)
        .where(*conditions)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    users = list(result.scalars().all())

    roles_by_user: dict[int, list[dict[str, Any]]] = {u.id: [] for u in users}
    if users:
        role_rows = await session.execute(
            select(UserRole.user_id, Role)
            .join(Role, Role.id == UserRole.role_id)
            .where(UserRole.user_id.in_(list(roles_by_user)))
            .order_by(Role.id)
        )
        for uid, role in role_rows.all():
            roles_by_user[uid].append(_role_brief(role))

    total_pages = -(-total // limit)
    return {
        "users": [{**u.to_safe_dict(), "roles": roles_by_user[u.id]} for u in users],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# ==================== 写操作 ====================

class UserLifecycleService:
    """
    用户生命周期操作

    持有会话工厂而不是单个会话：成功路径与失败审计各自使用独立事务。
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory
        self._settings = get_settings()

    async def _run_audited(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        *,
        admin_id: int,
        failure_action: str,
        resource_id: int | None,
        failure_changes: dict[str, Any],
        ctx: AuditContext,
    ) -> T:
        try:
            async with transaction(self._factory) as tx:
                return await operation(tx)
        except Exception as exc:
            await self._record_failure(
                admin_id=admin_id,
                action=failure_action,
                resource_id=resource_id,
                changes={**failure_changes, "error": str(exc), "timestamp": utcnow()},
                ctx=ctx,
            )
            raise

    async def _record_failure(
        self,
        *,
        admin_id: int,
        action: str,
        resource_id: int | None,
        changes: dict[str, Any],
        ctx: AuditContext,
    ) -> None:
        try:
            async with transaction(self._factory) as tx:
                await record_audit_log(
                    tx,
                    user_id=admin_id,
                    action=action,
                    resource_type=RESOURCE_USER,
                    resource_id=resource_id,
                    changes=changes,
                    ip_address=ctx.ip_address,
                    user_agent=ctx.user_agent,
                )
        except Exception:
            logger.exception(f"失败审计写入失败: {action}", extra={"target_user_id": resource_id})

    def _temporary_password_expiry(self) -> datetime:
        return utcnow() + timedelta(hours=self._settings.temporary_password_ttl_hours)

    # ---------- 创建用户 ----------

    async def create_user(
        self,
        admin_id: int,
        data: CreateUserData,
        ctx: AuditContext,
    ) -> CreatedUser:
        """
        创建用户并分配角色

        密码由系统随机生成，首次登录必须修改；明文只在返回值中出现一次。

        Raises:
            ValidationError: 格式错误，或角色不存在/为系统角色
            ConflictError: 邮箱或用户名已存在
        """
        email = _normalize_email(data.email)
        username = data.username.strip()
        role_ids = _unique_ids(data.role_ids)

        async def op(tx: AsyncSession) -> CreatedUser:
            errors = _format_errors(email, username, data.full_name)
            if errors:
                raise ValidationError("Invalid user data", errors)

            roles = await _load_assignable_roles(tx, role_ids)

            conflict = await _find_conflict(tx, email, username)
            if conflict:
                value = email if conflict == "email" else username
                raise ConflictError(f"{conflict} already exists", field=conflict, value=value)

            temporary_password = generate_secure_password(self._settings.temporary_password_length)
            user = User(
                email=email,
                username=username,
                full_name=data.full_name,
                password_hash=await hash_password(temporary_password),
                is_active=True,
                must_change_password=True,
                password_expires_at=self._temporary_password_expiry(),
            )
            tx.add(user)
            try:
                await tx.flush()
            except IntegrityError as e:
                # 并发创建同名用户时由唯一约束兜底
                raise ConflictError(
                    "email or username already exists", field="email_or_username"
                ) from e

            for role in roles:
                tx.add(UserRole(user_id=user.id, role_id=role.id, assigned_by=admin_id))

            assigned = [_role_brief(r) for r in roles]
            await record_audit_log(
                tx,
                user_id=admin_id,
                action="user_created",
                resource_type=RESOURCE_USER,
                resource_id=user.id,
                changes={
                    "target_user_id": user.id,
                    "email": user.email,
                    "username": user.username,
                    "full_name": user.full_name,
                    "assigned_roles": assigned,
                    "temporary_password_generated": True,
                    "timestamp": utcnow(),
                },
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
            await tx.flush()

            logger.info(
                f"用户已创建: {user.username}",
                extra={"target_user_id": user.id, "role_ids": role_ids},
            )
            return CreatedUser(
                user=user.to_safe_dict(),
                roles=assigned,
                temporary_password=temporary_password,
            )

        return await self._run_audited(
            op,
            admin_id=admin_id,
            failure_action="user_creation_failed",
            resource_id=None,
            failure_changes={"email": email, "username": username, "role_ids": role_ids},
            ctx=ctx,
        )

    # ---------- 调整角色 ----------

    async def update_user_roles(
        self,
        admin_id: int,
        data: UpdateUserRolesData,
        ctx: AuditContext,
    ) -> RoleUpdateResult:
        """
        把用户的可分配角色调整为 role_ids

        用户已持有的系统角色不参与比较，既不会被移除也不会出现在增删列表中。
        请求与现状一致时直接返回当前角色，不改任何行也不写审计。

        Raises:
            NotFoundError: 用户不存在
            ValidationError: 用户已停用，或角色不存在/为系统角色
        """
        role_ids = _unique_ids(data.role_ids)
        reason = data.reason or DEFAULT_REASON

        async def op(tx: AsyncSession) -> RoleUpdateResult:
            user = await _get_user(tx, data.user_id)
            if not user.is_active:
                raise ValidationError(
                    "Cannot update roles of an inactive user",
                    {"user_id": "Cannot update roles of an inactive user"},
                )

            requested = await _load_assignable_roles(tx, role_ids)
            current = await _get_user_roles(tx, user.id)
            system_held = [r for r in current if r.is_system]
            current_assignable = {r.id: r for r in current if not r.is_system}

            requested_ids = {r.id for r in requested}
            to_add = [r for r in requested if r.id not in current_assignable]
            to_remove = [r for rid, r in current_assignable.items() if rid not in requested_ids]

            if not to_add and not to_remove:
                return RoleUpdateResult(
                    user_id=user.id,
                    added_roles=[],
                    removed_roles=[],
                    current_roles=[_role_brief(r) for r in current],
                    changed=False,
                )

            if to_remove:
                await tx.execute(
                    delete(UserRole).where(
                        UserRole.user_id == user.id,
                        UserRole.role_id.in_([r.id for r in to_remove]),
                    )
                )
            for role in to_add:
                tx.add(UserRole(user_id=user.id, role_id=role.id, assigned_by=admin_id))
            user.updated_at = utcnow()

            final_roles = sorted(system_held + requested, key=lambda r: r.id)
            added = [_role_brief(r) for r in to_add]
            removed = [_role_brief(r) for r in to_remove]
            current_brief = [_role_brief(r) for r in final_roles]

            await record_audit_log(
                tx,
                user_id=admin_id,
                action="user_roles_updated",
                resource_type=RESOURCE_USER,
                resource_id=user.id,
                changes={
                    "target_user_id": user.id,
                    "target_username": user.username,
                    "reason": reason,
                    "added_roles": added,
                    "removed_roles": removed,
                    "current_roles": current_brief,
                    "timestamp": utcnow(),
                },
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
            try:
                await tx.flush()
            except IntegrityError as e:
                # 并发调整同一用户角色时由主键约束决定先后
                raise ConflictError("Role assignment changed concurrently", field="role_ids") from e

            logger.info(
                f"用户角色已更新: {user.username}",
                extra={
                    "target_user_id": user.id,
                    "added": [r.id for r in to_add],
                    "removed": [r.id for r in to_remove],
                },
            )
            return RoleUpdateResult(
                user_id=user.id,
                added_roles=added,
                removed_roles=removed,
                current_roles=current_brief,
                changed=True,
            )

        return await self._run_audited(
            op,
            admin_id=admin_id,
            failure_action="user_roles_update_failed",
            resource_id=data.user_id,
            failure_changes={
                "target_user_id": data.user_id,
                "requested_role_ids": role_ids,
                "reason": reason,
            },
            ctx=ctx,
        )

    # ---------- 重置密码 ----------

    async def reset_password(
        self,
        admin_id: int,
        target_user_id: int,
        ctx: AuditContext,
    ) -> PasswordResetResult:
        """
        为激活用户生成新的临时密码

        临时密码 24 小时内有效，登录后必须修改；审计只记录过期时间，不记录密码。

        Raises:
            NotFoundError: 用户不存在
            ValidationError: 用户已停用
        """

        async def op(tx: AsyncSession) -> PasswordResetResult:
            user = await _get_user(tx, target_user_id)
            if not user.is_active:
                raise ValidationError(
                    "Cannot reset password of an inactive user",
                    {"user_id": "Cannot reset password of an inactive user"},
                )

            temporary_password = generate_secure_password(self._settings.temporary_password_length)
            expires_at = self._temporary_password_expiry()
            user.password_hash = await hash_password(temporary_password)
            user.must_change_password = True
            user.password_expires_at = expires_at

            await record_audit_log(
                tx,
                user_id=admin_id,
                action="password_reset",
                resource_type=RESOURCE_USER,
                resource_id=user.id,
                changes={
                    "target_user_id": user.id,
                    "target_username": user.username,
                    "expires_at": expires_at,
                    "requires_password_change": True,
                    "timestamp": utcnow(),
                },
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )

            logger.info(f"用户密码已重置: {user.username}", extra={"target_user_id": user.id})
            return PasswordResetResult(
                user_id=user.id,
                temporary_password=temporary_password,
                expires_at=expires_at,
            )

        return await self._run_audited(
            op,
            admin_id=admin_id,
            failure_action="password_reset_failed",
            resource_id=target_user_id,
            failure_changes={"target_user_id": target_user_id},
            ctx=ctx,
        )

    # ---------- 停用 / 启用 ----------

    async def deactivate_user(
        self,
        admin_id: int,
        target_user_id: int,
        reason: str | None,
        ctx: AuditContext,
    ) -> StatusChangeResult:
        """
        停用用户

        清空 last_login_at，角色分配保留。已停用时原样返回，不写审计。

        Raises:
            NotFoundError: 用户不存在
            ValidationError: 用户持有系统角色
        """
        reason = reason or DEFAULT_REASON

        async def op(tx: AsyncSession) -> StatusChangeResult:
            user = await _get_user(tx, target_user_id)
            roles = await _get_user_roles(tx, user.id)

            system_roles = [r.name for r in roles if r.is_system]
            if system_roles:
                raise ValidationError(
                    "Cannot deactivate a user holding system roles",
                    {"user_id": f"User holds system roles: {', '.join(system_roles)}"},
                )

            if not user.is_active:
                return StatusChangeResult(user=user.to_safe_dict(), changed=False, message=ALREADY_INACTIVE)

            user.is_active = False
            user.last_login_at = None

            await record_audit_log(
                tx,
                user_id=admin_id,
                action="user_deactivated",
                resource_type=RESOURCE_USER,
                resource_id=user.id,
                changes={
                    "target_user_id": user.id,
                    "target_username": user.username,
                    "reason": reason,
                    "previous_status": "active",
                    "new_status": "inactive",
                    "session_invalidated": True,
                    "last_login_cleared": True,
                    "preserved_roles": [_role_brief(r) for r in roles],
                    "timestamp": utcnow(),
                },
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
            await tx.flush()

            logger.info(f"用户已停用: {user.username}", extra={"target_user_id": user.id})
            return StatusChangeResult(user=user.to_safe_dict(), changed=True)

        return await self._run_audited(
            op,
            admin_id=admin_id,
            failure_action="user_deactivation_failed",
            resource_id=target_user_id,
            failure_changes={"target_user_id": target_user_id, "reason": reason},
            ctx=ctx,
        )

    async def reactivate_user(
        self,
        admin_id: int,
        target_user_id: int,
        reason: str | None,
        ctx: AuditContext,
    ) -> StatusChangeResult:
        """
        重新启用用户，已激活时原样返回，不写审计

        Raises:
            NotFoundError: 用户不存在
        """
        reason = reason or DEFAULT_REASON

        async def op(tx: AsyncSession) -> StatusChangeResult:
            user = await _get_user(tx, target_user_id)
            if user.is_active:
                return StatusChangeResult(user=user.to_safe_dict(), changed=False, message=ALREADY_ACTIVE)

            roles = await _get_user_roles(tx, user.id)
            user.is_active = True

            await record_audit_log(
                tx,
                user_id=admin_id,
                action="user_reactivated",
                resource_type=RESOURCE_USER,
                resource_id=user.id,
                changes={
                    "target_user_id": user.id,
                    "target_username": user.username,
                    "reason": reason,
                    "previous_status": "inactive",
                    "new_status": "active",
                    "restored_roles": [_role_brief(r) for r in roles],
                    "timestamp": utcnow(),
                },
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
            await tx.flush()

            logger.info(f"用户已启用: {user.username}", extra={"target_user_id": user.id})
            return StatusChangeResult(user=user.to_safe_dict(), changed=True)

        return await self._run_audited(
            op,
            admin_id=admin_id,
            failure_action="user_reactivation_failed",
            resource_id=target_user_id,
            failure_changes={"target_user_id": target_user_id, "reason": reason},
            ctx=ctx,
        )

    # ---------- 修改资料 ----------

    async def update_user_profile(
        self,
        admin_id: int,
        target_user_id: int,
        data: UpdateUserProfileData,
        ctx: AuditContext,
    ) -> ProfileUpdateResult:
        """
        修改邮箱、用户名、姓名；未变化的字段忽略，全部未变化时不写审计

        Raises:
            NotFoundError: 用户不存在
            ValidationError: 格式错误
            ConflictError: 邮箱或用户名被其他用户占用
        """
        email = _normalize_email(data.email)
        username = data.username.strip() if data.username is not None else None

        async def op(tx: AsyncSession) -> ProfileUpdateResult:
            user = await _get_user(tx, target_user_id)

            errors = _format_errors(email, username, data.full_name)
            if errors:
                raise ValidationError("Invalid user data", errors)

            conflict = await _find_conflict(tx, email, username, exclude_user_id=user.id)
            if conflict:
                value = email if conflict == "email" else username
                raise ConflictError(f"{conflict} already exists", field=conflict, value=value)

            changes: dict[str, dict[str, Any]] = {}
            for field_name, value in (("email", email), ("username", username), ("full_name", data.full_name)):
                if value is None or getattr(user, field_name) == value:
                    continue
                changes[field_name] = {"from": getattr(user, field_name), "to": value}
                setattr(user, field_name, value)

            if not changes:
                return ProfileUpdateResult(user=user.to_safe_dict(), changes={})

            await record_audit_log(
                tx,
                user_id=admin_id,
                action="user_updated",
                resource_type=RESOURCE_USER,
                resource_id=user.id,
                changes={
                    "target_user_id": user.id,
                    "fields": changes,
                    "timestamp": utcnow(),
                },
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
            await tx.flush()
            return ProfileUpdateResult(user=user.to_safe_dict(), changes=changes)

        return await self._run_audited(
            op,
            admin_id=admin_id,
            failure_action="user_update_failed",
            resource_id=target_user_id,
            failure_changes={
                "target_user_id": target_user_id,
                "requested": {"email": email, "username": username, "full_name": data.full_name},
            },
            ctx=ctx,
        )
