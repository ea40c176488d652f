"""
枚举类型定义模块

定义应用中使用的所有枚举类型。
枚举用于限制字段只能取特定的值，提供类型安全和代码可读性。

所有枚举都继承自 str 和 Enum，这样既可以用作字符串，又具有枚举的特性。
"""
from enum import Enum  # 枚举类型，用于定义固定的选项集合


class PlanName(str, Enum):
    """
    订阅套餐名称枚举

    - Basic: 基础版
    - Pro: 专业版
    - VIP: 旗舰版
    """
    basic = "Basic"
    pro = "Pro"
    vip = "VIP"


class SubscriptionStatus(str, Enum):
    """
    订阅状态枚举

    定义订阅的当前状态：
    - pending: 已生成支付链接，等待支付
    - active: 激活中
    - cancelled: 已取消
    - expired: 已过期
    - past_due: 扣款失败，待补缴
    - paused: 已暂停
    """
    pending = "pending"
    active = "active"
    cancelled = "cancelled"
    expired = "expired"
    past_due = "past_due"
    paused = "paused"


class PaymentStatus(str, Enum):
    """
    支付流水状态枚举

    与 Razorpay 支付实体的状态保持一致：
    - pending: 待支付
    - authorized: 已授权
    - captured: 已扣款
    - failed: 支付失败
    - refunded: 已退款
    """
    pending = "pending"
    authorized = "authorized"
    captured = "captured"
    failed = "failed"
    refunded = "refunded"


class CancellationPolicy(str, Enum):
    """
    取消策略枚举（按部署配置，二选一）

    - grace_period: 保留访问权限直到当前计费周期结束，只关闭自动续费
    - immediate: 立即取消，访问权限立即失效
    """
    grace_period = "grace_period"
    immediate = "immediate"


class StreakStatus(str, Enum):
    """
    连续打卡状态枚举

    - new: 从未分析过
    - active_today: 今天已分析
    - ready: 昨天分析过，今天分析可延续
    - broken: 已中断（间隔超过一天）
    """
    new = "new"
    active_today = "active_today"
    ready = "ready"
    broken = "broken"


class NotificationType(str, Enum):
    """
    通知类型枚举
    """
    reminder = "reminder"
    achievement = "achievement"
    subscription_expiry = "subscription_expiry"
    subscription_cancelled = "subscription_cancelled"
    payment_failed = "payment_failed"
    system = "system"
