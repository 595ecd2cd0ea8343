"""
数据库模块

- base.py    : SQLAlchemy 基类定义，所有 ORM 模型都继承自它
- session.py : 引擎、会话工厂、事务作用域

使用 SQLAlchemy 2.0 + asyncpg（测试使用 aiosqlite）实现完全异步的数据库操作。
"""
