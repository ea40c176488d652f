"""
基础模型模块

定义所有模型共用的基础类和工具函数。
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import Column
from sqlalchemy import Enum as SAEnum
from sqlmodel import SQLModel


def utc_now() -> datetime:
    """
    获取当前 UTC 时间

    Returns:
        当前 UTC 时区的日期时间对象
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    补全时区信息

    SQLite 读回的 DateTime(timezone=True) 字段不带时区，
    统一按 UTC 处理，避免 naive/aware 比较报错。
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def enum_column(enum_cls: type[Enum], length: int = 16, **kwargs: Any) -> Column:
    """
    枚举字段列

    以 VARCHAR 存储枚举值（非数据库原生枚举，便于迁移），读回时还原为枚举成员。
    """
    return Column(
        SAEnum(
            enum_cls,
            native_enum=False,
            length=length,
            values_callable=lambda e: [m.value for m in e],
        ),
        **kwargs,
    )


# 导出 SQLModel 供其他模块使用
__all__ = ["SQLModel", "utc_now", "as_utc", "enum_column"]
