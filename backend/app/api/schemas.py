"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

成功响应都带 success 字段；错误响应由 main.py 中的异常处理器统一生成：
    {"success": false, "error": "...", "code": "NOT_FOUND"}
"""
from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal  # 精确数值类型，用于金额和评分
from typing import Any

from pydantic import BaseModel, Field

from app.enums import NotificationType, PaymentStatus, StreakStatus

# ============================================================
# 通用模型
# ============================================================


class Message(BaseModel):
    """简单的文本消息响应"""
    success: bool = True
    message: str


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储用户 ID（由身份服务签发）。
    """
    sub: str | None = None


# ============================================================
# 订阅
# ============================================================


class CreateSubscriptionRequest(BaseModel):
    plan_id: int
    user_id: int


class CreateSubscriptionData(BaseModel):
    success: bool = True
    subscription_id: int
    payment_link_id: str
    short_url: str | None = None


class CancelSubscriptionRequest(BaseModel):
    subscription_id: int


class CancelledSubscription(BaseModel):
    id: int
    status: str
    access_until: datetime | None = None  # 宽限期内可继续使用到该时间
    cancelled: bool
    auto_renewal: bool


class CancelSubscriptionData(BaseModel):
    success: bool = True
    message: str
    subscription: CancelledSubscription


class ChangePlanRequest(BaseModel):
    new_plan_id: int
    user_id: int


class ChangePlanData(BaseModel):
    success: bool = True
    subscription_id: int
    old_subscription_id: int
    payment_link_id: str
    short_url: str | None = None
    message: str


class VerifyPaymentRequest(BaseModel):
    """
    前端支付完成后的校验请求

    razorpay_subscription_id 为订阅记录上的外部 ID（支付链接 ID 或 sub_ 开头的订阅 ID）。
    """
    razorpay_payment_id: str = Field(min_length=1, max_length=64)
    razorpay_subscription_id: str = Field(min_length=1, max_length=64)
    razorpay_signature: str = Field(min_length=1, max_length=255)
    user_id: int


class VerifiedSubscription(BaseModel):
    id: int
    plan_name: str | None = None
    status: str


class VerifyPaymentData(BaseModel):
    success: bool = True
    verified: bool
    subscription: VerifiedSubscription


class WebhookAck(BaseModel):
    success: bool = True
    event: str
    duplicate: bool = False


class PlanPublic(BaseModel):
    id: int
    plan_name: str
    plan_price_usd: Decimal
    monthly_analyses_limit: int
    description: str | None = None
    features: list[str] = []


class PlansData(BaseModel):
    success: bool = True
    plans: list[PlanPublic]


class SubscriptionDetails(BaseModel):
    subscription_id: int
    plan_name: str | None = None
    plan_price: Decimal | None = None
    subscription_status: str
    analyses_used: int
    analyses_limit: int
    analyses_remaining: int
    cycle_start: datetime | None = None
    cycle_end: datetime | None = None
    auto_renewal: bool
    cancelled_at: datetime | None = None
    razorpay_subscription_id: str | None = None


class SubscriptionDetailsData(BaseModel):
    success: bool = True
    subscription: SubscriptionDetails | None = None


class PaymentPublic(BaseModel):
    id: int
    subscription_id: int | None = None
    razorpay_payment_id: str | None = None
    amount: Decimal
    currency: str
    amount_usd: Decimal
    payment_status: PaymentStatus
    payment_method: str | None = None
    error_description: str | None = None
    transaction_date: datetime


class PaymentsData(BaseModel):
    success: bool = True
    payments: list[PaymentPublic]
    count: int


# ============================================================
# 使用额度
# ============================================================


class CanAnalyzeData(BaseModel):
    can_analyze: bool
    analyses_remaining: int
    subscription_status: str  # 没有有效订阅时为 "none"
    plan_name: str
    message: str


class IncrementUsageRequest(BaseModel):
    analysis_result_id: str | None = Field(default=None, max_length=64)
    analysis_type: str | None = Field(default=None, max_length=32)
    overall_score: Decimal | None = Field(default=None, ge=0, le=100)


class IncrementUsageData(BaseModel):
    """额度不足等软失败也返回 200，success=false 并带 error"""
    success: bool
    error: str | None = None
    analysis_id: int | None = None
    analyses_used: int | None = None
    analyses_remaining: int | None = None


class AnalysisPublic(BaseModel):
    id: int
    analysis_type: str
    analysis_result_id: str | None = None
    overall_score: Decimal | None = None
    created_at: datetime


class AnalysisHistoryData(BaseModel):
    success: bool = True
    analyses: list[AnalysisPublic]
    count: int


class DailyStatsData(BaseModel):
    success: bool = True
    date: dt.date  # 字段名与类型同名，用模块限定避免解析冲突
    analyses_count: int
    average_score: int
    best_score: Decimal
    previous_day_score: int
    improvement: int  # 相对前一天平均分的百分比变化


# ============================================================
# 连续打卡
# ============================================================


class MilestonePublic(BaseModel):
    days: int
    title: str
    description: str
    icon: str
    color: str


class StreakDataPublic(BaseModel):
    success: bool = True
    current_streak: int
    longest_streak: int
    last_analysis_date: date | None = None
    streak_freeze_count: int
    days_since_last: int
    streak_status: StreakStatus
    motivation: str
    next_milestone: MilestonePublic | None = None


class StreakUpdateData(BaseModel):
    success: bool = True
    current_streak: int
    longest_streak: int
    last_analysis_date: date | None = None
    is_new_record: bool
    milestone_achieved: MilestonePublic | None = None


class StreakMilestonesData(BaseModel):
    success: bool = True
    streak: int
    achieved: list[MilestonePublic]
    next_milestone: MilestonePublic | None = None


# ============================================================
# 通知
# ============================================================


class NotificationPublic(BaseModel):
    id: int
    notification_type: NotificationType
    title: str
    message: str
    action_url: str | None = None
    action_label: str | None = None
    meta: dict[str, Any] = {}
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class NotificationsData(BaseModel):
    success: bool = True
    notifications: list[NotificationPublic]
    unread_count: int


class UnreadCountData(BaseModel):
    success: bool = True
    unread_count: int


class CreateNotificationRequest(BaseModel):
    notification_type: NotificationType = NotificationType.system
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1, max_length=1024)
    action_url: str | None = Field(default=None, max_length=512)
    action_label: str | None = Field(default=None, max_length=64)
    meta: dict[str, Any] | None = None


class NotificationData(BaseModel):
    success: bool = True
    notification: NotificationPublic
