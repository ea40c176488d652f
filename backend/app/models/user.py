"""
用户模型模块

定义用户相关的数据库模型。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    身份服务中用户的本地镜像，JWT 的 sub 即为此表主键。
    创建 Razorpay 客户和支付链接时需要用到邮箱、姓名和手机号。

    字段说明：
    - id: 主键，使用 Snowflake 算法生成的分布式唯一 ID
    - email: 邮箱（唯一且建立索引）
    - full_name: 姓名（可选）
    - phone: 手机号（可选）
    - created_at: 创建时间（自动设置）
    - updated_at: 更新时间（自动设置）
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    email: str = Field(
        max_length=255,
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
    )
    full_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    @property
    def display_name(self) -> str:
        """用于 Razorpay 客户名称：优先姓名，其次邮箱前缀"""
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split("@")[0]
        return "User"
