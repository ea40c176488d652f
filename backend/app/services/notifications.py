"""
通知与订阅维护服务

check_expiring_subscriptions 负责两件事：
1. 宽限期取消（cancelled_at 已设置、自动续费关闭）的 active 订阅在周期结束后置为 expired
2. 即将到期（EXPIRY_REMINDER_DAYS 天内）的 active 订阅，每个计费周期发送一次到期提醒

用户拉取通知时会针对该用户执行一次，定时任务会针对所有用户执行。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlmodel import Session, col, select

from app import crud
from app.core.config import settings
from app.enums import NotificationType, SubscriptionStatus
from app.models import SubscriptionPlan, UserSubscription, as_utc, utc_now
from app.services import reconciliation

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceResult:
    expired: int = 0
    reminders: int = 0


def _is_grace_cancelled(sub: UserSubscription) -> bool:
    return sub.cancelled_at is not None and not sub.auto_renewal_enabled


def check_expiring_subscriptions(
    session: Session, *, user_id: int | None = None, now: datetime | None = None
) -> MaintenanceResult:
    """
    订阅维护：过期处理 + 到期提醒

    Args:
        session: 数据库会话
        user_id: 只处理该用户；为空时处理所有用户
        now: 当前时间（测试时可注入）

    Returns:
        MaintenanceResult: 本次过期的订阅数和发送的提醒数
    """
    now = now or utc_now()
    statement = select(UserSubscription).where(
        UserSubscription.subscription_status == SubscriptionStatus.active,
        col(UserSubscription.current_billing_cycle_end).is_not(None),
    )
    if user_id is not None:
        statement = statement.where(UserSubscription.user_id == user_id)

    result = MaintenanceResult()
    remind_before = timedelta(days=settings.EXPIRY_REMINDER_DAYS)

    for sub in session.exec(statement).all():
        cycle_end = as_utc(sub.current_billing_cycle_end)
        if cycle_end is None:
            continue

        if cycle_end <= now:
            if _is_grace_cancelled(sub) and reconciliation.mark_expired(session, sub, now=now):
                result.expired += 1
                logger.info("Grace period ended, subscription %s expired", sub.id)
            continue

        if cycle_end - now > remind_before:
            continue

        dedupe_key = f"{sub.id}:{cycle_end.isoformat()}"
        if crud.notification.exists_for_subscription(
            session=session,
            user_id=sub.user_id,
            notification_type=NotificationType.subscription_expiry,
            key=dedupe_key,
        ):
            continue

        plan = session.get(SubscriptionPlan, sub.plan_id)
        plan_name = plan.plan_name.value if plan else "subscription"
        days_left = max((cycle_end - now).days, 0)
        if _is_grace_cancelled(sub):
            message = f"Your {plan_name} plan ends in {days_left} day(s). Resubscribe to keep analyzing."
        else:
            message = f"Your {plan_name} plan renews in {days_left} day(s)."
        crud.notification.create(
            session=session,
            user_id=sub.user_id,
            notification_type=NotificationType.subscription_expiry,
            title="Subscription Expiring Soon",
            message=message,
            action_label="Manage Subscription",
            meta={
                "subscription_id": sub.id,
                "cycle_end": cycle_end.isoformat(),
                "dedupe_key": dedupe_key,
            },
        )
        result.reminders += 1

    session.commit()
    if result.expired or result.reminders:
        logger.info(
            "Subscription maintenance: expired=%d reminders=%d", result.expired, result.reminders
        )
    return result
