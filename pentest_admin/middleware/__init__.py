"""
中间件模块

- RequestTraceMiddleware: 请求追踪和日志记录
- AuthGateMiddleware: 会话门禁与滑动续期
"""

from pentest_admin.middleware.auth_gate import AuthGateMiddleware
from pentest_admin.middleware.request_trace import RequestTraceMiddleware

__all__ = ["AuthGateMiddleware", "RequestTraceMiddleware"]
