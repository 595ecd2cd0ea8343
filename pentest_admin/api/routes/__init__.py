"""
API 路由汇总

路由模块说明：
- health.py : 健康检查接口
- auth.py   : 登录、登出、会话、权限查询、修改密码
- users.py  : 用户管理（创建、角色、重置密码、停用/启用、审计）
- audit.py  : 系统审计日志
- roles.py  : 可分配角色
"""

from fastapi import APIRouter

from pentest_admin.api.routes import audit, auth, health, roles, users

# 主路由器，包含所有 API 端点
api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router)  # 以下路由自带 prefix 和 tags
api_router.include_router(users.router)
api_router.include_router(audit.router)
api_router.include_router(roles.router)
