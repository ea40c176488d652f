"""
连续打卡模型模块
"""
from datetime import date, datetime

from sqlalchemy import BigInteger, Column, Date, DateTime, ForeignKey
from sqlmodel import Field, SQLModel

from .base import utc_now


class UserStreak(SQLModel, table=True):
    """
    用户连续打卡快照

    服务端权威数据，每个用户一行，主键即用户 ID。
    缺失时由分析记录重建。
    """
    __tablename__ = "user_streaks"
    user_id: int = Field(
        sa_column=Column(
            BigInteger,
            ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
            autoincrement=False,
        )
    )
    current_streak: int = Field(default=0)
    longest_streak: int = Field(default=0)
    last_analysis_date: date | None = Field(default=None, sa_column=Column(Date, nullable=True))
    streak_freeze_count: int = Field(default=0)
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
