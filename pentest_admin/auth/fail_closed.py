"""
失败关闭（fail-closed）边界

权限判断和会话解析的公共接口永远不向外抛异常：
内部逻辑可以自然地抛出，边界处统一记录日志并返回最严格的默认值
（False / 空集合 / None）。
"""

import functools
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pentest_admin.infra.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def attempt_or_default(
    operation: Callable[[], Awaitable[T]],
    default: T | Callable[[], T],
    label: str,
) -> T:
    """
    执行 operation，出错时返回 default

    default 可以是值，也可以是无参函数（用于构造依赖入参的默认值）。
    """
    try:
        return await operation()
    except Exception:
        logger.warning(f"{label} 执行失败，按拒绝处理", exc_info=True)
        return default() if callable(default) else default


def fail_closed(default_factory: Callable[..., Any]):
    """
    装饰器版本：包装异步方法，异常时返回默认值

    default_factory 以被包装方法的原始入参调用，
    这样批量判断时可以为每个请求的权限名构造 False。
    """

    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await attempt_or_default(
                lambda: func(*args, **kwargs),
                lambda: default_factory(*args, **kwargs),
                func.__qualname__,
            )

        return wrapper

    return decorator
