"""
审计日志模型

只追加的历史事实表：写入后从不更新、从不删除，
本模块和服务层都没有修改审计记录的路径。

字段说明：
- user_id: 操作者（匿名/系统操作为空；用户被删除时置空保留记录）
- action: 操作标签（user_created / login_failed / user_deactivation_failed ...）
- resource_type: 资源类型（user / auth / system ...）
- resource_id: 资源 ID
- changes: 结构化变更内容，失败记录带 error 字段
- ip_address / user_agent: 请求来源
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from pentest_admin.db.base import Base
from pentest_admin.models.mixins import utcnow


class AuditLog(Base):
    """审计日志表"""

    __tablename__ = "audit_logs"

    # SQLite 只有 INTEGER 主键才自增
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), index=True
    )

    # 操作信息
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(100))
    changes: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql")
    )

    # 客户端信息
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(500))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    __table_args__ = (
        Index("ix_audit_logs_user_created", "user_id", "created_at"),
        Index("ix_audit_logs_action_created", "action", "created_at"),
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
    )

    def __repr__(self):
        return f"<AuditLog {self.id} {self.action} {self.resource_type}:{self.resource_id}>"
