"""审计日志相关的响应模型"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from pentest_admin.schemas.user import Pagination


class AuditActor(BaseModel):
    id: int
    username: str
    email: str
    full_name: str | None = None


class AuditLogItem(BaseModel):
    id: int
    action: str
    resource_type: str
    resource_id: str | None = None
    changes: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime
    user: AuditActor | None = None


class ActionStat(BaseModel):
    action: str
    count: int


class ResourceTypeStat(BaseModel):
    resource_type: str
    count: int


class ActorSummary(BaseModel):
    username: str
    email: str
    full_name: str | None = None


class UserStat(BaseModel):
    user_id: int
    count: int
    user: ActorSummary | None = None


class AuditStats(BaseModel):
    total: int
    action_stats: list[ActionStat]
    resource_type_stats: list[ResourceTypeStat]
    user_stats: list[UserStat]


class SystemAuditLogsResponse(BaseModel):
    audit_logs: list[AuditLogItem]
    pagination: Pagination
    filters: dict[str, Any]
    stats: AuditStats


class TargetUser(BaseModel):
    id: int
    username: str
    email: str


class UserAuditLogsResponse(BaseModel):
    audit_logs: list[AuditLogItem]
    target_user: TargetUser
    pagination: Pagination
    filters: dict[str, Any]


class DailyCount(BaseModel):
    date: str
    count: int


class ActionStatisticsResponse(BaseModel):
    action: str
    days: int
    total: int
    daily: list[DailyCount]
