"""
FastAPI 应用实例

这是 FastAPI 应用的核心配置文件，负责：
1. 创建 FastAPI 应用实例
2. 配置应用生命周期（启动时校验认证配置、初始化数据库）
3. 注册所有 API 路由
4. 配置结构化日志、请求追踪和认证门禁
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pentest_admin.api.routes import api_router
from pentest_admin.auth.session import get_session_manager
from pentest_admin.config import get_settings, validate_auth_config
from pentest_admin.db.session import init_models
from pentest_admin.exceptions import AppError
from pentest_admin.infra.logging import get_logger, setup_logging
from pentest_admin.middleware import AuthGateMiddleware, RequestTraceMiddleware

# 配置结构化日志
setup_logging()
logger = get_logger(__name__)

# 获取全局配置（单例模式，整个应用共享同一个配置实例）
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器

    启动时：
        - 校验会话密钥，缺失或为占位值时拒绝启动
        - 开发/测试环境自动建表，生产环境使用 Alembic 迁移
    """
    # ========== 启动时执行 ==========
    logger.info(f"应用启动中... 环境: {settings.environment}")

    # ConfigError 直接抛出，启动失败
    validate_auth_config(settings)
    get_session_manager()

    if settings.environment in ("dev", "development", "test"):
        await init_models()
        logger.info("数据库表初始化完成（开发模式）")
    else:
        logger.info("跳过自动建表，请使用 Alembic 迁移")

    yield  # 应用运行中...

    # ========== 关闭时执行 ==========
    logger.info("应用已关闭")


# 创建 FastAPI 应用实例
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
)

# 注册中间件（注意顺序：后添加的先执行）
app.add_middleware(AuthGateMiddleware)  # 认证门禁
app.add_middleware(RequestTraceMiddleware)  # 请求追踪，最外层，记录包括门禁拒绝在内的所有请求

# CORS 配置：仅在配置了来源时启用，会话 Cookie 需要 allow_credentials
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# 注册所有 API 路由
app.include_router(api_router)


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError):
    """
    业务异常统一响应：
    {
        "detail": "<错误信息>",
        "code": "<ERROR_CODE>",
        ...附加字段（errors / field / permission）
    }
    """
    content: dict = {"detail": exc.message, "code": exc.code}
    for attr in ("errors", "field", "permission"):
        value = getattr(exc, attr, None)
        if value:
            content[attr] = value
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException):
    """
    统一错误响应格式：
    {
        "detail": "<错误信息>",
        "code": "<ERROR_CODE>"
    }
    """
    code = "UNKNOWN_ERROR"
    detail = exc.detail
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code") or code
        detail = exc.detail.get("detail") or exc.detail.get("message") or detail
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "code": code},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    # 将 Pydantic 校验错误统一映射为 VALIDATION_ERROR
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "code": "VALIDATION_ERROR"},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(_: Request, exc: Exception):
    """未预期的异常：生产环境只返回通用信息，具体原因只写日志"""
    logger.exception(f"未处理的异常: {exc}")
    detail = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(
        status_code=500,
        content={"detail": detail, "code": "INTERNAL_ERROR"},
    )
