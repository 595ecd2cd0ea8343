"""
登录限流

按 客户端 IP + 登录标识 做滑动窗口限流，防止口令爆破。
- 未配置 REDIS_URL：内存限流（单实例）
- 配置了 REDIS_URL：Redis Sorted Set 限流（多实例共享）
"""

import time
from abc import ABC, abstractmethod
from functools import lru_cache

from pentest_admin.config import get_settings
from pentest_admin.infra.logging import get_logger

logger = get_logger(__name__)


def login_rate_key(ip_address: str | None, identifier: str) -> str:
    """限流键：IP + 小写登录标识"""
    return f"login:{ip_address or 'unknown'}:{identifier.strip().lower()}"


class BaseRateLimiter(ABC):
    """限流器基类"""

    @abstractmethod
    def allow(self, key: str) -> bool:
        """检查请求是否允许通过"""

    @abstractmethod
    def reset(self, key: str) -> None:
        """清空某个键的计数（登录成功后调用）"""


class MemoryRateLimiter(BaseRateLimiter):
    """
    内存滑动窗口限流器

    适用于单实例部署，多实例部署请使用 Redis 限流器。
    登录标识由未登录的调用方提交，每个窗口周期清理一次过期的键。
    """

    def __init__(self, window_seconds: int, max_requests: int) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._buckets: dict[str, list[float]] = {}
        self._last_sweep = time.time()

    def _sweep(self, now: float) -> None:
        """删除窗口内已没有请求记录的键"""
        window_start = now - self.window_seconds
        stale = [k for k, bucket in self._buckets.items() if not bucket or bucket[-1] < window_start]
        for k in stale:
            del self._buckets[k]
        self._last_sweep = now

    def allow(self, key: str) -> bool:
        now = time.time()
        window_start = now - self.window_seconds
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)

        bucket = self._buckets.get(key, [])
        while bucket and bucket[0] < window_start:
            bucket.pop(0)

        self._buckets[key] = bucket
        if len(bucket) >= self.max_requests:
            return False

        bucket.append(now)
        return True

    def reset(self, key: str) -> None:
        self._buckets.pop(key, None)


class RedisRateLimiter(BaseRateLimiter):
    """
    Redis 滑动窗口限流器

    Redis 不可用时降级为放行，登录本身仍需校验密码。
    """

    def __init__(self, redis_url: str, window_seconds: int, max_requests: int) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._redis = None
        self._redis_url = redis_url

    @property
    def redis(self):
        if self._redis is None:
            import redis
            self._redis = redis.from_url(self._redis_url)
        return self._redis

    def allow(self, key: str) -> bool:
        now = time.time()
        window_start = now - self.window_seconds
        redis_key = f"ratelimit:{key}"

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(redis_key, 0, window_start)
            pipe.zcard(redis_key)
            pipe.zadd(redis_key, {str(now): now})
            pipe.expire(redis_key, self.window_seconds + 1)
            results = pipe.execute()

            if results[1] >= self.max_requests:
                # 超限，移除刚添加的
                self.redis.zrem(redis_key, str(now))
                return False
            return True
        except Exception as e:
            logger.warning(f"Redis 限流异常，降级到允许通过: {e}")
            return True

    def reset(self, key: str) -> None:
        try:
            self.redis.delete(f"ratelimit:{key}")
        except Exception as e:
            logger.warning(f"Redis 限流计数清理失败: {e}")


@lru_cache(maxsize=1)
def get_login_rate_limiter() -> BaseRateLimiter:
    """根据配置选择限流器实现（单例）"""
    settings = get_settings()
    if settings.redis_url:
        logger.info("使用 Redis 登录限流器")
        return RedisRateLimiter(
            redis_url=settings.redis_url,
            window_seconds=settings.login_rate_limit_window_seconds,
            max_requests=settings.login_rate_limit_per_minute,
        )
    return MemoryRateLimiter(
        window_seconds=settings.login_rate_limit_window_seconds,
        max_requests=settings.login_rate_limit_per_minute,
    )
