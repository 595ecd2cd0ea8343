"""
渗透测试管理后台 - 权限与审计核心

子模块：
- api/        : API 路由和依赖注入
- auth/       : 密码、会话、权限解析、登录限流
- db/         : 数据库连接、会话和事务作用域
- models/     : SQLAlchemy ORM 数据模型（用户、RBAC、审计日志）
- schemas/    : Pydantic 请求/响应模式
- services/   : 业务逻辑（用户生命周期、审计查询、登录）
- middleware/ : 认证门禁、请求追踪
- infra/      : 结构化日志

项目架构遵循分层设计：
    中间件 → API层 → 服务层 → 数据访问层
"""
