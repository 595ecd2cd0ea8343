"""
业务异常定义

路由层之外的代码只抛出这里的异常，由 main.py 中注册的异常处理器
统一转换为 {"detail": ..., "code": ...} 响应。
"""


class AppError(Exception):
    """业务异常基类"""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(AppError):
    """未登录或会话无效"""

    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthorizationError(AppError):
    """已登录但权限不足"""

    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Permission denied", permission: str | None = None) -> None:
        super().__init__(message)
        self.permission = permission


class PasswordChangeRequiredError(AuthorizationError):
    """临时密码尚未修改"""

    code = "PASSWORD_CHANGE_REQUIRED"

    def __init__(self) -> None:
        super().__init__("Password change required before accessing this resource")


class ValidationError(AppError):
    """输入校验失败，errors 为 字段 -> 错误信息"""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class ConflictError(AppError):
    """唯一性冲突（重复邮箱/用户名）"""

    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str, field: str, value: str | None = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


class NotFoundError(AppError):
    """资源不存在"""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class RateLimitError(AppError):
    """请求过于频繁"""

    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str = "Too many requests, please try again later") -> None:
        super().__init__(message)


class ConfigError(Exception):
    """启动配置错误"""
