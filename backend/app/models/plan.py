"""
订阅套餐模型模块

定义套餐目录（只读）相关的数据库模型。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, BigInteger, Column, DateTime, Numeric
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import PlanName

from .base import enum_column, utc_now


class SubscriptionPlan(SQLModel, table=True):
    """
    订阅套餐模型

    由管理员在后台维护（或通过 initial_data 种子数据写入），应用只读。

    字段说明：
    - id: 主键
    - plan_name: 套餐名称（Basic/Pro/VIP，唯一）
    - plan_price_usd: 月费（美元）
    - monthly_analyses_limit: 每个计费周期可用的分析次数
    - description: 描述（可选）
    - features: 功能列表（有序）
    - is_active: 是否上架
    """
    __tablename__ = "subscription_plans"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    plan_name: PlanName = Field(sa_column=enum_column(PlanName, unique=True, nullable=False))
    plan_price_usd: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    monthly_analyses_limit: int = Field(default=0)
    description: str | None = Field(default=None, max_length=255)
    features: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_active: bool = Field(default=True)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
