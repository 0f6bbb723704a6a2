"""
数据库模型基类（SQLAlchemy 2.0 风格）
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Type

from sqlalchemy import CheckConstraint
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# 元数据对象用于数据库迁移
metadata = Base.metadata


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def enum_check(column: str, enum_cls: Type[Enum], name: str) -> CheckConstraint:
    """CHECK constraint limiting a string column to the values of `enum_cls`."""
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)
