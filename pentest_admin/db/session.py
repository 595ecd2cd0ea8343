"""
数据库会话管理

这个模块负责：
1. 创建数据库引擎（连接池）
2. 提供异步会话工厂
3. 提供 FastAPI 依赖注入的会话获取函数
4. 提供事务作用域 transaction()，作为业务写操作的工作单元

使用方式：
    from pentest_admin.db.session import get_db, transaction

    @router.get("/users")
    async def list_users(db: AsyncSession = Depends(get_db)):
        ...

    async with transaction(factory) as tx:
        tx.add(user)
        await record_audit_log(tx, action="user_created", resource_type="user")
        # 正常退出时提交，异常时回滚
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pentest_admin.config import get_settings
from pentest_admin.db.base import Base

settings = get_settings()


def _engine_kwargs(database_url: str) -> dict:
    """SQLite 不支持连接池参数，仅对服务端数据库启用"""
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,  # 取连接前先探活，避免使用已断开的连接
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


# ==================== 创建数据库引擎 ====================
engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_engine_kwargs(settings.database_url),
)

# ==================== 创建会话工厂 ====================
# expire_on_commit=False：提交后仍可访问对象属性，不触发额外查询
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    获取会话工厂（FastAPI 依赖）

    业务服务需要自行开启多个事务（成功事务 + 失败审计事务），
    因此注入的是工厂而不是单个会话。测试中通过 dependency_overrides 替换。
    """
    return SessionLocal


async def get_db(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """
    获取只读查询用的数据库会话（FastAPI 依赖）

    每个请求一个独立会话，请求结束后自动关闭。
    """
    async with factory() as session:
        yield session


@asynccontextmanager
async def transaction(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """
    事务作用域

    打开新会话并开启事务，代码块正常结束时提交，抛出异常时回滚。
    审计写入 record_audit_log 只接受处于事务中的会话，
    保证状态变更与审计记录同时提交或同时回滚。
    """
    factory = factory or SessionLocal
    async with factory() as session:
        async with session.begin():
            yield session


async def init_models(bind: AsyncEngine | None = None) -> None:
    """
    初始化数据库表（仅开发/测试环境使用）

    生产环境应使用 Alembic 迁移，此方法不会修改已存在的表结构。
    """
    from pentest_admin import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
