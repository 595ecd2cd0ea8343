"""
Alembic 迁移环境配置

生产环境的表结构只通过迁移维护（开发/测试环境由 init_models 自动建表）。

- 离线模式：生成 SQL 脚本，交给 DBA 审核
- 在线模式：通过异步引擎（asyncpg）直接执行
- 数据库 URL 优先读取 DATABASE_URL 环境变量，其次是应用配置
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from pentest_admin.config import get_settings
from pentest_admin.db.base import Base
from pentest_admin import models  # noqa: F401 - 注册 users/roles/permissions/audit_logs 等表

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    return os.getenv("DATABASE_URL") or get_settings().database_url


def run_migrations_offline() -> None:
    """离线模式：只输出 SQL"""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_url()

    # 迁移是一次性任务，不使用连接池
    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
