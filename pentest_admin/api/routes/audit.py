"""
系统审计日志接口

需要 system.audit 权限。日期参数接受 ISO-8601 日期或时间，
无时区的按 UTC 处理；格式错误或开始晚于结束返回 400。
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pentest_admin.api.deps import get_db_session, require_permission
from pentest_admin.auth.permissions import PERMISSIONS
from pentest_admin.exceptions import ValidationError
from pentest_admin.schemas.audit import ActionStatisticsResponse, SystemAuditLogsResponse
from pentest_admin.services.audit import (
    SYSTEM_DEFAULT_LIMIT,
    AuditLogFilters,
    get_action_statistics,
    query_system_audit_logs,
)

router = APIRouter(
    prefix="/api/audit",
    tags=["audit"],
    dependencies=[Depends(require_permission(PERMISSIONS.SYSTEM_AUDIT))],
)


def parse_date_param(value: str | None, field: str) -> datetime | None:
    """解析查询参数中的日期，失败抛出 ValidationError"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"Invalid {field}", {field: f"Invalid date: {value}"}) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@router.get("", response_model=SystemAuditLogsResponse)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(SYSTEM_DEFAULT_LIMIT, ge=1),
    action: str | None = Query(None),
    resource_type: str | None = Query(None),
    resource_id: str | None = Query(None),
    user_id: int | None = Query(None),
    ip_address: str | None = Query(None),
    search: str | None = Query(None, max_length=100),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    db: AsyncSession = Depends(get_db_session),
) -> SystemAuditLogsResponse:
    """
    系统审计日志（筛选 + 分页 + 统计）

    limit 超过 200 时按 200 处理。
    """
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date")
    if start and end and start > end:
        raise ValidationError("start_date must not be after end_date",
                              {"start_date": "start_date must not be after end_date"})

    filters = AuditLogFilters(
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        user_id=user_id,
        ip_address=ip_address,
        search=search,
        start_date=start,
        end_date=end,
    )
    result = await query_system_audit_logs(db, filters, page=page, limit=limit)
    return SystemAuditLogsResponse.model_validate(result)


@router.get("/actions/{action}/stats", response_model=ActionStatisticsResponse)
async def action_statistics(
    action: str,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db_session),
) -> ActionStatisticsResponse:
    """某类操作最近 N 天的按天统计"""
    return ActionStatisticsResponse.model_validate(
        await get_action_statistics(db, action, days=days)
    )
