"""
分析记录模型模块

定义 AI 肌肉分析记录相关的数据库模型，用于额度统计和历史查询。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id

from .base import utc_now


class AnalysisRecord(SQLModel, table=True):
    """
    分析记录模型

    每次完成分析后写入一行（分析本身由外部 AI 服务完成）。
    同时作为连续打卡（streak）重建时的数据来源。

    字段说明：
    - id: 主键
    - user_id: 用户 ID（外键）
    - subscription_id: 计费所属的订阅 ID（可选）
    - analysis_type: 分析类型（默认 muscle_analysis）
    - analysis_result_id: 外部分析结果 ID（可选）
    - overall_score: 总评分（可选）
    - meta: 附加信息，列名为 metadata
    - created_at: 分析时间
    """
    __tablename__ = "analysis_records"
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
    analysis_type: str = Field(default="muscle_analysis", sa_column=Column(String(32), nullable=False))
    analysis_result_id: str | None = Field(default=None, max_length=64)
    overall_score: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(5, 2), nullable=True)
    )
    meta: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
