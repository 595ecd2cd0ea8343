"""
渗透测试管理后台 - 启动入口

运行方式：
    - 直接执行：python main.py
    - 或者使用：uvicorn pentest_admin.main:app --reload

启动前必须设置 AUTH_SECRET（至少 32 个字符），否则服务拒绝启动。

服务启动后可以访问：
    - API 文档：http://localhost:8000/docs
    - 健康检查：http://localhost:8000/api/health
"""

import uvicorn


def main() -> None:
    """使用 uvicorn 启动 FastAPI 服务器（开发模式，自动重载）"""
    uvicorn.run(
        "pentest_admin.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )


if __name__ == "__main__":
    main()
