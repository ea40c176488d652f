"""
通知模型模块

定义站内通知相关的数据库模型。
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import NotificationType

from .base import enum_column, utc_now


class Notification(SQLModel, table=True):
    """
    通知模型

    字段说明：
    - id: 主键
    - user_id: 用户 ID（外键）
    - notification_type: 通知类型
    - title/message: 标题和内容
    - action_url/action_label: 点击跳转地址和按钮文案（可选）
    - meta: 附加信息（如 subscription_id、cycle_end），列名为 metadata
    - is_read: 是否已读
    - read_at: 阅读时间
    """
    __tablename__ = "notifications"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    notification_type: NotificationType = Field(
        sa_column=enum_column(NotificationType, length=32, nullable=False)
    )
    title: str = Field(max_length=255)
    message: str = Field(max_length=1024)
    action_url: str | None = Field(default=None, max_length=512)
    action_label: str | None = Field(default=None, max_length=64)
    meta: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    is_read: bool = Field(default=False)
    read_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
