"""
SQLAlchemy ORM 基类定义

所有数据库模型都必须继承自这个 Base 类，
SQLAlchemy 通过 Base.metadata 收集表结构，用于建表和 Alembic 迁移。
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """声明式基类"""
    pass
