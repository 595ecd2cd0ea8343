"""
审计日志服务

写入：
    record_audit_log 只接受处于事务中的会话，和它记录的状态变更在同一个
    事务里提交或回滚。审计记录只追加，本模块不提供更新/删除。

查询：
    - query_system_audit_logs : 全系统审计日志（筛选 + 分页 + 统计）
    - query_user_audit_logs   : 某个用户作为操作者或操作对象的审计日志
    - get_action_statistics   : 某类操作的按天统计

使用示例：
    from pentest_admin.db.session import transaction
    from pentest_admin.services.audit import record_audit_log

    async with transaction(factory) as tx:
        user.is_active = False
        await record_audit_log(
            tx,
            user_id=admin_id,
            action="user_deactivated",
            resource_type="user",
            resource_id=user.id,
            changes={"reason": reason},
        )
"""

import math
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import and_, desc, func, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from pentest_admin.exceptions import NotFoundError
from pentest_admin.infra.logging import get_logger
from pentest_admin.models import AuditLog, User
from pentest_admin.models.mixins import utcnow

logger = get_logger(__name__)

# 需要脱敏的字段（按键名精确匹配，不区分大小写）
SENSITIVE_FIELDS = {
    "password",
    "new_password",
    "current_password",
    "temporary_password",
    "password_hash",
    "token",
    "secret",
    "api_key",
    "authorization",
}

USER_AGENT_MAX_LENGTH = 500

SYSTEM_DEFAULT_LIMIT = 50
SYSTEM_MAX_LIMIT = 200
USER_DEFAULT_LIMIT = 20
USER_MAX_LIMIT = 100
STATS_TOP_N = 10


def sanitize_changes(data: Any) -> Any:
    """
    递归脱敏并转换为可 JSON 序列化的结构

    - 敏感键的值替换为 ***
    - datetime/date 转为 ISO 字符串
    """
    if isinstance(data, dict):
        return {
            key: "***" if str(key).lower() in SENSITIVE_FIELDS else sanitize_changes(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple, set)):
        return [sanitize_changes(item) for item in data]
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    return data


async def record_audit_log(
    tx: AsyncSession,
    *,
    action: str,
    resource_type: str,
    user_id: int | None = None,
    resource_id: int | str | None = None,
    changes: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog:
    """
    追加一条审计记录

    Args:
        tx: 处于事务中的会话，由调用方提交
        action: 操作标签
        resource_type: 资源类型
        user_id: 操作者，匿名/系统操作为空
        resource_id: 资源 ID
        changes: 结构化变更内容
        ip_address: 客户端 IP
        user_agent: User-Agent，超长截断

    Raises:
        RuntimeError: 会话没有活动事务
    """
    if not tx.in_transaction():
        raise RuntimeError("record_audit_log requires a session with an active transaction")

    if user_agent and len(user_agent) > USER_AGENT_MAX_LENGTH:
        user_agent = user_agent[:USER_AGENT_MAX_LENGTH]

    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        changes=sanitize_changes(changes) if changes is not None else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    tx.add(entry)
    # 不在这里 commit，由 transaction() 统一提交

    logger.debug(
        f"审计日志: {action} {resource_type}:{resource_id}",
        extra={"audit_action": action, "actor_id": user_id},
    )
    return entry


# ==================== 查询 ====================

@dataclass
class AuditLogFilters:
    """系统级审计日志筛选条件"""
    action: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    user_id: int | None = None
    ip_address: str | None = None
    search: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    def conditions(self) -> list:
        conditions = []
        if self.action:
            conditions.append(AuditLog.action == self.action)
        if self.resource_type:
            conditions.append(AuditLog.resource_type == self.resource_type)
        if self.resource_id is not None:
            conditions.append(AuditLog.resource_id == str(self.resource_id))
        if self.user_id is not None:
            conditions.append(AuditLog.user_id == self.user_id)
        if self.ip_address:
            conditions.append(AuditLog.ip_address.ilike(f"%{self.ip_address}%"))
        if self.start_date:
            conditions.append(AuditLog.created_at >= self.start_date)
        if self.end_date:
            conditions.append(AuditLog.created_at <= self.end_date)
        if self.search:
            pattern = f"%{self.search}%"
            conditions.append(
                or_(AuditLog.action.ilike(pattern), AuditLog.resource_type.ilike(pattern))
            )
        return conditions

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def clamp_pagination(page: int, limit: int, max_limit: int) -> tuple[int, int]:
    """page 至少为 1，limit 限制在 [1, max_limit]"""
    return max(1, page), min(max_limit, max(1, limit))


def _pagination(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def _log_to_dict(log: AuditLog, user: User | None) -> dict[str, Any]:
    return {
        "id": log.id,
        "action": log.action,
        "resource_type": log.resource_type,
        "resource_id": log.resource_id,
        "changes": log.changes,
        "ip_address": log.ip_address,
        "user_agent": log.user_agent,
        "created_at": log.created_at,
        "user": {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "full_name": user.full_name,
        } if user is not None else None,
    }


async def _fetch_logs(
    session: AsyncSession,
    where,
    page: int,
    limit: int,
) -> tuple[list[dict[str, Any]], int]:
    total = (
        await session.execute(select(func.count(AuditLog.id)).where(where))
    ).scalar() or 0

    query = (
        select(AuditLog, User)
        .outerjoin(User, User.id == AuditLog.user_id)
        .where(where)
        .order_by(desc(AuditLog.created_at), desc(AuditLog.id))
        .limit(limit)
        .offset((page - 1) * limit)
    )
    rows = (await session.execute(query)).all()
    return [_log_to_dict(log, user) for log, user in rows], total


async def _top_counts(session: AsyncSession, column, where) -> list[tuple[Any, int]]:
    count = func.count(AuditLog.id).label("count")
    query = (
        select(column, count)
        .where(where)
        .group_by(column)
        .order_by(desc(count))
        .limit(STATS_TOP_N)
    )
    return [(value, cnt) for value, cnt in (await session.execute(query)).all()]


async def query_system_audit_logs(
    session: AsyncSession,
    filters: AuditLogFilters | None = None,
    *,
    page: int = 1,
    limit: int = SYSTEM_DEFAULT_LIMIT,
) -> dict[str, Any]:
    """
    系统级审计日志

    统计信息与列表使用相同的筛选条件：总数、操作类型 Top10、
    资源类型 Top10、操作者 Top10（附用户信息）。
    """
    filters = filters or AuditLogFilters()
    page, limit = clamp_pagination(page, limit, SYSTEM_MAX_LIMIT)
    conditions = filters.conditions()
    where = and_(*conditions) if conditions else true()

    logs, total = await _fetch_logs(session, where, page, limit)

    action_stats = await _top_counts(session, AuditLog.action, where)
    resource_stats = await _top_counts(session, AuditLog.resource_type, where)
    user_stats = await _top_counts(
        session, AuditLog.user_id, and_(where, AuditLog.user_id.is_not(None))
    )

    users: dict[int, User] = {}
    if user_stats:
        result = await session.execute(
            select(User).where(User.id.in_([uid for uid, _ in user_stats]))
        )
        users = {u.id: u for u in result.scalars().all()}

    return {
        "audit_logs": logs,
        "pagination": _pagination(page, limit, total),
        "filters": filters.to_dict(),
        "stats": {
            "total": total,
            "action_stats": [{"action": a, "count": c} for a, c in action_stats],
            "resource_type_stats": [
                {"resource_type": r, "count": c} for r, c in resource_stats
            ],
            "user_stats": [
                {
                    "user_id": uid,
                    "count": c,
                    "user": {
                        "username": users[uid].username,
                        "email": users[uid].email,
                        "full_name": users[uid].full_name,
                    } if uid in users else None,
                }
                for uid, c in user_stats
            ],
        },
    }


async def query_user_audit_logs(
    session: AsyncSession,
    user_id: int,
    *,
    page: int = 1,
    limit: int = USER_DEFAULT_LIMIT,
    action: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict[str, Any]:
    """
    用户相关审计日志：该用户作为操作者，或作为操作对象（resource_type=user）

    Raises:
        NotFoundError: 用户不存在
    """
    target = await session.get(User, user_id)
    if target is None:
        raise NotFoundError("User")

    page, limit = clamp_pagination(page, limit, USER_MAX_LIMIT)
    conditions = [
        or_(
            AuditLog.user_id == user_id,
            and_(AuditLog.resource_type == "user", AuditLog.resource_id == str(user_id)),
        )
    ]
    if action:
        conditions.append(AuditLog.action == action)
    if start_date:
        conditions.append(AuditLog.created_at >= start_date)
    if end_date:
        conditions.append(AuditLog.created_at <= end_date)

    logs, total = await _fetch_logs(session, and_(*conditions), page, limit)
    pagination = _pagination(page, limit, total)

    return {
        "audit_logs": logs,
        "target_user": {"id": target.id, "username": target.username, "email": target.email},
        "pagination": pagination,
        "filters": {
            k: v
            for k, v in {"action": action, "start_date": start_date, "end_date": end_date}.items()
            if v is not None
        },
    }


async def get_action_statistics(
    session: AsyncSession,
    action: str,
    *,
    days: int = 30,
) -> dict[str, Any]:
    """某类操作最近 days 天的总数和按天计数（无记录的日期不返回）"""
    start = utcnow() - timedelta(days=days)
    day = func.date(AuditLog.created_at).label("day")
    query = (
        select(day, func.count(AuditLog.id))
        .where(AuditLog.action == action, AuditLog.created_at >= start)
        .group_by(day)
        .order_by(day)
    )
    rows = (await session.execute(query)).all()
    daily = [{"date": str(d), "count": c} for d, c in rows]
    return {
        "action": action,
        "days": days,
        "total": sum(item["count"] for item in daily),
        "daily": daily,
    }
