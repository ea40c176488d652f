"""
订阅模型模块

定义用户订阅记录相关的数据库模型。
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Index, String, text
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import SubscriptionStatus

from .base import enum_column, utc_now

_ACTIVE_ONLY = text("subscription_status = 'active'")


class UserSubscription(SQLModel, table=True):
    """
    用户订阅记录模型

    每次订阅尝试一行（不是每个用户一行）：更换套餐时会创建新行，
    旧行保留作为历史。状态由生命周期接口和 Razorpay 回调共同驱动。

    使用部分唯一索引保证同一用户最多只有一条 active 记录，
    防止并发创建/激活导致出现两个有效订阅。

    字段说明：
    - id: 主键
    - user_id: 用户 ID（外键）
    - plan_id: 套餐 ID（外键）
    - subscription_status: 订阅状态
    - razorpay_subscription_id: Razorpay 订阅 ID 或支付链接 ID（plink_...）
    - razorpay_customer_id: Razorpay 客户 ID
    - current_billing_cycle_start/end: 当前计费周期
    - analyses_used_this_month: 当前周期已用分析次数
    - auto_renewal_enabled: 是否自动续费
    - cancelled_at: 取消时间（设置后自动续费必须关闭）
    - subscription_end_date: 订阅结束时间（过期时写入）
    - pause_start_date/pause_end_date: 暂停区间
    - meta: 附加信息（如换套餐时记录旧订阅 ID），列名为 metadata
    - last_event_at: 最近一次已应用的支付网关事件时间（用于丢弃乱序的旧事件）
    """
    __tablename__ = "user_subscriptions"
    __table_args__ = (
        Index(
            "uq_user_subscriptions_one_active",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    plan_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("subscription_plans.id"), nullable=False)
    )

    subscription_status: SubscriptionStatus = Field(
        sa_column=enum_column(SubscriptionStatus, index=True, nullable=False)
    )
    razorpay_subscription_id: str | None = Field(
        default=None, sa_column=Column(String(64), index=True, nullable=True)
    )
    razorpay_customer_id: str | None = Field(default=None, max_length=64)

    current_billing_cycle_start: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    current_billing_cycle_end: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    analyses_used_this_month: int = Field(default=0)
    auto_renewal_enabled: bool = Field(default=True)

    cancelled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    subscription_end_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    pause_start_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    pause_end_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    meta: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    last_event_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
