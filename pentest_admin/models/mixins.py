"""
模型混入类 (Mixins) 与时间工具

使用示例：
    class Role(TimestampMixin, Base):
        __tablename__ = "roles"
        # 自动获得 created_at 和 updated_at 字段
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, mapped_column


def utcnow() -> datetime:
    """带时区的当前 UTC 时间"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite 读回的时间不带时区，统一补齐为 UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class TimestampMixin:
    """
    时间戳混入类

    - created_at: 记录创建时间
    - updated_at: 记录最后更新时间，ORM 发出 UPDATE 时刷新

    时间在应用侧生成（default/onupdate），刷新后对象上的值立即可读，
    不需要再回库加载；server_default 兜底直接写 SQL 的场景。
    没有任何字段变化时 ORM 不会发出 UPDATE，updated_at 保持不变。
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )
