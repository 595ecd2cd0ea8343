"""
RBAC 模型：角色、权限及关联表

    User ──< UserRole >── Role ──< RolePermission >── Permission

- Role.is_system 标记内置角色，不能通过用户管理接口分配或移除，
  持有系统角色的用户也不能被停用（防止管理员被锁在系统外）
- Permission.name 形如 resource.action，全局唯一；
  resource.* 表示该资源下的全部操作
- 模型之间不声明 relationship，查询统一用显式 join，避免异步懒加载
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pentest_admin.db.base import Base
from pentest_admin.models.mixins import TimestampMixin, utcnow


class Role(TimestampMixin, Base):
    """角色表"""

    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))

    # 内置角色（如 system_admin）
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<Role {self.id} {self.name}>"


class Permission(TimestampMixin, Base):
    """权限表"""

    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))

    # 仅用于界面分组展示
    category: Mapped[str] = mapped_column(String(50), nullable=False)

    def __repr__(self):
        return f"<Permission {self.name}>"


class RolePermission(Base):
    """角色-权限关联表"""

    __tablename__ = "role_permissions"

    role_id: Mapped[int] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    permission_id: Mapped[int] = mapped_column(
        ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
    )


class UserRole(Base):
    """
    用户-角色关联表

    用户删除时级联删除其角色分配；角色被分配期间不能删除（RESTRICT）。
    """

    __tablename__ = "user_roles"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[int] = mapped_column(
        ForeignKey("roles.id", ondelete="RESTRICT"), primary_key=True, index=True
    )

    # 执行分配的管理员
    assigned_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
