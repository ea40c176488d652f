"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- user.py: 用户模型
- plan.py: 订阅套餐模型
- subscription.py: 用户订阅记录模型
- payment.py: 支付流水和 Webhook 事件模型
- analysis.py: 分析记录模型
- streak.py: 连续打卡模型
- notification.py: 通知模型
"""
from sqlmodel import SQLModel

from .analysis import AnalysisRecord
from .base import as_utc, utc_now
from .notification import Notification
from .payment import PaymentTransaction, WebhookEvent
from .plan import SubscriptionPlan
from .streak import UserStreak
from .subscription import UserSubscription
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "as_utc",
    "User",
    "SubscriptionPlan",
    "UserSubscription",
    "PaymentTransaction",
    "WebhookEvent",
    "AnalysisRecord",
    "UserStreak",
    "Notification",
]
