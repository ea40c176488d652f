"""
支付流水模型模块

定义支付流水（只追加的审计日志）和 Webhook 事件记录模型。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import PaymentStatus

from .base import enum_column, utc_now


class PaymentTransaction(SQLModel, table=True):
    """
    支付流水模型

    每个支付网关的支付事件对应一行，插入后不再修改。
    同一 razorpay_payment_id + payment_status 只记录一次（重复投递的事件会被跳过）。

    字段说明：
    - id: 主键
    - user_id: 用户 ID（外键）
    - subscription_id: 订阅 ID（可选）
    - razorpay_payment_id: Razorpay 支付 ID（pay_...）
    - razorpay_order_id: Razorpay 订单 ID 或支付链接 ID
    - razorpay_signature: 客户端校验时的签名（可选）
    - amount: 实付金额（结算币种）
    - currency: 结算币种
    - amount_usd: 按固定汇率折算的美元金额
    - payment_status: 支付状态
    - payment_method: 支付方式（card/upi/netbanking 等）
    - error_code/error_description: 失败原因（可选）
    - transaction_date: 交易时间
    - meta: 附加信息，列名为 metadata
    """
    __tablename__ = "payment_transactions"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    subscription_id: int | None = Field(
        default=None,
        sa_column=Column(
            BigInteger, ForeignKey("user_subscriptions.id", ondelete="SET NULL"), nullable=True
        ),
    )

    razorpay_payment_id: str | None = Field(
        default=None, sa_column=Column(String(64), index=True, nullable=True)
    )
    razorpay_order_id: str | None = Field(default=None, max_length=64)
    razorpay_signature: str | None = Field(default=None, max_length=255)

    amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(12, 2), nullable=False),
    )
    currency: str = Field(default="INR", max_length=8)
    amount_usd: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )

    payment_status: PaymentStatus = Field(sa_column=enum_column(PaymentStatus, nullable=False))
    payment_method: str | None = Field(default=None, max_length=32)
    error_code: str | None = Field(default=None, max_length=64)
    error_description: str | None = Field(default=None, max_length=512)

    transaction_date: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    meta: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class WebhookEvent(SQLModel, table=True):
    """
    Razorpay Webhook 事件记录模型

    存储所有接收到的 webhook 事件，用于去重和审计。
    通过 event_id（X-Razorpay-Event-Id 请求头）唯一性防止重复处理同一事件。
    """
    __tablename__ = "webhook_events"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    event_id: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    event_type: str = Field(max_length=64)
    payload: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
