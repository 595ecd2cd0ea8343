"""
初始化 RBAC 数据脚本

用途：
    - 新环境部署后写入权限目录、内置角色和初始管理员
    - 重复执行是安全的，已存在的数据不会被修改

管理员密码从 ADMIN_PASSWORD 环境变量读取，必须满足密码复杂度要求。

用法示例：
    ADMIN_PASSWORD='...' uv run python scripts/seed_rbac.py
    ADMIN_PASSWORD='...' uv run python scripts/seed_rbac.py --email ops@example.com --username ops
    ADMIN_PASSWORD='...' uv run python scripts/seed_rbac.py --create-tables   # 开发环境，未跑迁移时
"""

import argparse
import asyncio
import os
import sys

from pentest_admin.db.session import SessionLocal, engine, init_models
from pentest_admin.exceptions import ValidationError
from pentest_admin.infra.logging import setup_logging
from pentest_admin.services.bootstrap import ADMIN_EMAIL, ADMIN_USERNAME, seed_rbac


async def main() -> int:
    parser = argparse.ArgumentParser(description="Seed RBAC permissions, roles and the initial admin")
    parser.add_argument("--email", default=ADMIN_EMAIL, help="Admin email")
    parser.add_argument("--username", default=ADMIN_USERNAME, help="Admin username")
    parser.add_argument("--create-tables", action="store_true", help="Create tables before seeding (dev only)")
    args = parser.parse_args()

    password = os.getenv("ADMIN_PASSWORD")
    if not password:
        print("ADMIN_PASSWORD environment variable is required", file=sys.stderr)
        return 1

    setup_logging()
    try:
        if args.create_tables:
            await init_models()
        summary = await seed_rbac(
            SessionLocal,
            password,
            admin_email=args.email,
            admin_username=args.username,
        )
    except ValidationError as e:
        print(f"{e.message}: {e.errors}", file=sys.stderr)
        return 1
    finally:
        await engine.dispose()

    state = "created" if summary.admin_created else "already exists"
    print(f"Seeded {summary.permissions} permissions, {summary.roles} roles; "
          f"admin user {summary.admin_user_id} {state}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
