"""
健康检查接口

用于容器编排系统进行存活探测，无需登录。
"""

from fastapi import APIRouter

router = APIRouter()


@router.get("/api/health")
async def healthcheck() -> dict:
    """返回 {"status": "ok"} 表示服务正常运行"""
    return {"status": "ok"}
