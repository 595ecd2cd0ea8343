"""
用户模型 (User)

用户是后台的操作者，通过 UserRole 关联多个角色。

安全设计：
- 密码使用 bcrypt 哈希存储，永不明文保存
- 邮箱、用户名全局唯一
- 停用用户（is_active = False）不能登录，也不具备任何权限；停用从不删除行
- 管理员创建或重置密码后 must_change_password = True，登录后必须先改密码
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pentest_admin.db.base import Base
from pentest_admin.models.mixins import TimestampMixin


class User(TimestampMixin, Base):
    """用户表"""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # 登录标识：邮箱或用户名均可登录
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(String(100))

    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # 账号状态：False 表示停用，禁止登录且权限解析为空
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # 临时密码标记：True 时除认证接口外一律拒绝，直到用户修改密码
    must_change_password: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # 临时密码过期时间，过期后不能再用该临时密码登录
    password_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # 停用时清空，迫使下游重新校验
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def to_safe_dict(self) -> dict:
        """不含密码哈希的用户字段"""
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "full_name": self.full_name,
            "is_active": self.is_active,
            "must_change_password": self.must_change_password,
            "last_login_at": self.last_login_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"<User {self.id} {self.username}>"
