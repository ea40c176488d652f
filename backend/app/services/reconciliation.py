"""
订阅状态对账（状态迁移）服务

Webhook、支付链接回跳、前端支付校验三条路径都只通过本模块修改订阅状态，
保证同一事件无论从哪条路径、以何种顺序到达，都只生效一次：

- 顺序保护：每次迁移携带事件时间，早于 last_event_at 的事件直接忽略
- 激活幂等：已经 active 的订阅不会重复开启新的计费周期
- 流水去重：同一 razorpay_payment_id + payment_status 只记录一次
- 唯一有效：激活时把同一用户其他 active 订阅置为 cancelled

所有函数只修改 session 中的对象，不提交事务，由调用方统一 commit。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlmodel import Session, select

from app import crud
from app.core.config import settings
from app.enums import NotificationType, PaymentStatus, SubscriptionStatus
from app.models import PaymentTransaction, UserSubscription, as_utc, utc_now

logger = logging.getLogger(__name__)

# 可以被支付成功激活的状态
_ACTIVATABLE = (SubscriptionStatus.pending, SubscriptionStatus.past_due)
# 已结束的订阅，续费扣款不再生效
_CLOSED = (SubscriptionStatus.cancelled, SubscriptionStatus.expired)


@dataclass(frozen=True)
class PaymentInfo:
    """
    一次支付的关键信息（来自 webhook 支付实体、回跳参数或前端校验参数）

    amount 为结算币种的最小单位（paise）。
    """
    payment_id: str | None
    amount: int | None = None
    currency: str | None = None
    method: str | None = None
    order_id: str | None = None
    signature: str | None = None
    error_code: str | None = None
    error_description: str | None = None

    @classmethod
    def from_entity(cls, entity: dict[str, Any] | None) -> PaymentInfo | None:
        """从 Razorpay payment 实体构建"""
        if not entity:
            return None
        return cls(
            payment_id=entity.get("id"),
            amount=entity.get("amount"),
            currency=entity.get("currency"),
            method=entity.get("method"),
            order_id=entity.get("order_id") or entity.get("payment_link_id"),
            error_code=entity.get("error_code"),
            error_description=entity.get("error_description"),
        )


def billing_cycle(start: datetime) -> tuple[datetime, datetime]:
    """计费周期 [start, start + BILLING_CYCLE_DAYS)"""
    return start, start + timedelta(days=settings.BILLING_CYCLE_DAYS)


def to_usd(amount: Decimal, currency: str) -> Decimal:
    """按固定汇率把结算金额折算为美元"""
    if currency.upper() == "USD":
        return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return (amount / settings.USD_TO_SETTLEMENT_RATE).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


def _is_stale(sub: UserSubscription, event_at: datetime | None) -> bool:
    last = as_utc(sub.last_event_at)
    if event_at is None or last is None:
        return False
    return as_utc(event_at) < last  # type: ignore[operator]


def _touch(sub: UserSubscription, event_at: datetime | None, now: datetime) -> None:
    # last_event_at 只记录网关事件时间，回跳/前端校验没有事件时间，不参与顺序比较
    if event_at is not None:
        sub.last_event_at = event_at
    sub.updated_at = now


def record_transaction(
    session: Session,
    *,
    sub: UserSubscription | None,
    user_id: int,
    status: PaymentStatus,
    payment: PaymentInfo | None,
    meta: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> PaymentTransaction | None:
    """
    追加一条支付流水

    相同 razorpay_payment_id + payment_status 已存在时跳过并返回 None。
    """
    payment_id = payment.payment_id if payment else None
    if payment_id:
        existing = session.exec(
            select(PaymentTransaction).where(
                PaymentTransaction.razorpay_payment_id == payment_id,
                PaymentTransaction.payment_status == status,
            )
        ).first()
        if existing is not None:
            logger.info("Duplicate payment event skipped: %s %s", payment_id, status.value)
            return None

    currency = (payment.currency if payment else None) or settings.SETTLEMENT_CURRENCY
    minor = payment.amount if payment and payment.amount is not None else 0
    amount = (Decimal(int(minor)) / 100).quantize(Decimal("0.01"))

    tx = PaymentTransaction(
        user_id=user_id,
        subscription_id=sub.id if sub else None,
        razorpay_payment_id=payment_id,
        razorpay_order_id=(payment.order_id if payment else None)
        or (sub.razorpay_subscription_id if sub else None),
        razorpay_signature=payment.signature if payment else None,
        amount=amount,
        currency=currency,
        amount_usd=to_usd(amount, currency),
        payment_status=status,
        payment_method=payment.method if payment else None,
        error_code=payment.error_code if payment else None,
        error_description=payment.error_description if payment else None,
        transaction_date=now or utc_now(),
        meta=meta or {},
    )
    session.add(tx)
    return tx


def _supersede_other_active(session: Session, sub: UserSubscription, now: datetime) -> None:
    others = session.exec(
        select(UserSubscription).where(
            UserSubscription.user_id == sub.user_id,
            UserSubscription.subscription_status == SubscriptionStatus.active,
            UserSubscription.id != sub.id,
        )
    ).all()
    for other in others:
        logger.info("Subscription %s superseded by %s", other.id, sub.id)
        other.subscription_status = SubscriptionStatus.cancelled
        other.auto_renewal_enabled = False
        other.cancelled_at = other.cancelled_at or now
        other.meta = {**(other.meta or {}), "superseded_by": sub.id}
        other.updated_at = now
        session.add(other)
    if others:
        # 旧记录必须先落库，否则部分唯一索引会拒绝新的 active 行
        session.flush()


def activate(
    session: Session,
    sub: UserSubscription,
    *,
    payment: PaymentInfo | None = None,
    event_at: datetime | None = None,
    now: datetime | None = None,
    source: str = "webhook",
) -> bool:
    """
    确认支付成功，激活订阅

    pending/past_due -> active，开启新的计费周期并记录 captured 流水。
    已经 active 时只补记流水（去重），不重置周期。

    Returns:
        本次是否改变了订阅状态
    """
    now = now or utc_now()
    if _is_stale(sub, event_at):
        logger.info("Stale activation ignored for subscription %s", sub.id)
        return False

    if sub.subscription_status == SubscriptionStatus.active:
        record_transaction(
            session, sub=sub, user_id=sub.user_id, status=PaymentStatus.captured,
            payment=payment, meta={"source": source}, now=now,
        )
        return False

    if sub.subscription_status not in _ACTIVATABLE:
        logger.warning(
            "Payment received for subscription %s in status %s, not activating",
            sub.id,
            sub.subscription_status,
        )
        record_transaction(
            session, sub=sub, user_id=sub.user_id, status=PaymentStatus.captured,
            payment=payment, meta={"source": source, "not_activated": True}, now=now,
        )
        return False

    _supersede_other_active(session, sub, now)

    start, end = billing_cycle(now)
    sub.subscription_status = SubscriptionStatus.active
    sub.current_billing_cycle_start = start
    sub.current_billing_cycle_end = end
    _touch(sub, event_at, now)
    session.add(sub)
    record_transaction(
        session, sub=sub, user_id=sub.user_id, status=PaymentStatus.captured,
        payment=payment, meta={"source": source}, now=now,
    )
    logger.info("Subscription %s activated via %s", sub.id, source)
    return True


def roll_cycle(
    session: Session,
    sub: UserSubscription,
    *,
    payment: PaymentInfo | None = None,
    event_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    """
    续费成功：计费周期从当前时间起顺延，已用次数清零

    - 同一 payment_id 的重复投递不会再次顺延
    - cancelled/expired 的订阅只补记流水，不恢复、不顺延（例如换套餐后旧订阅的续费扣款）
    - past_due 扣款成功后恢复为 active，但用户已有其他 active 订阅时保持原状态
    - 其余状态不变
    """
    now = now or utc_now()
    if _is_stale(sub, event_at):
        logger.info("Stale charge ignored for subscription %s", sub.id)
        return False

    if sub.subscription_status in _CLOSED:
        logger.warning(
            "Charge received for subscription %s in status %s, recording only",
            sub.id,
            sub.subscription_status.value,
        )
        record_transaction(
            session, sub=sub, user_id=sub.user_id, status=PaymentStatus.captured,
            payment=payment, meta={"source": "subscription.charged", "not_renewed": True}, now=now,
        )
        return False

    tx = record_transaction(
        session, sub=sub, user_id=sub.user_id, status=PaymentStatus.captured,
        payment=payment, meta={"source": "subscription.charged"}, now=now,
    )
    if tx is None:
        return False

    if sub.subscription_status == SubscriptionStatus.past_due:
        current = crud.subscription.get_active_for_user(session=session, user_id=sub.user_id)
        if current is None:
            sub.subscription_status = SubscriptionStatus.active
        else:
            logger.warning(
                "Subscription %s charged while %s is active, keeping it past_due", sub.id, current.id
            )
    start, end = billing_cycle(now)
    sub.current_billing_cycle_start = start
    sub.current_billing_cycle_end = end
    sub.analyses_used_this_month = 0
    _touch(sub, event_at, now)
    session.add(sub)
    logger.info("Subscription %s renewed until %s", sub.id, end.isoformat())
    return True


def _set_status(
    session: Session,
    sub: UserSubscription,
    status: SubscriptionStatus,
    *,
    event_at: datetime | None,
    now: datetime,
) -> bool:
    if _is_stale(sub, event_at):
        logger.info("Stale %s event ignored for subscription %s", status.value, sub.id)
        return False
    if status == SubscriptionStatus.active and sub.subscription_status != SubscriptionStatus.active:
        _supersede_other_active(session, sub, now)
    sub.subscription_status = status
    _touch(sub, event_at, now)
    session.add(sub)
    logger.info("Subscription %s -> %s", sub.id, status.value)
    return True


def mark_expired(
    session: Session,
    sub: UserSubscription,
    *,
    event_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    now = now or utc_now()
    if sub.subscription_status == SubscriptionStatus.expired:
        return False
    if not _set_status(session, sub, SubscriptionStatus.expired, event_at=event_at, now=now):
        return False
    sub.subscription_end_date = now
    sub.auto_renewal_enabled = False
    return True


def mark_cancelled(
    session: Session,
    sub: UserSubscription,
    *,
    event_at: datetime | None = None,
    now: datetime | None = None,
    notify: bool = True,
) -> bool:
    now = now or utc_now()
    if sub.subscription_status == SubscriptionStatus.cancelled:
        return False
    if not _set_status(session, sub, SubscriptionStatus.cancelled, event_at=event_at, now=now):
        return False
    sub.cancelled_at = sub.cancelled_at or now
    sub.auto_renewal_enabled = False
    if notify:
        crud.notification.create(
            session=session,
            user_id=sub.user_id,
            notification_type=NotificationType.subscription_cancelled,
            title="Subscription Cancelled",
            message="Your subscription has been cancelled.",
            meta={"subscription_id": sub.id},
        )
    return True


def mark_paused(
    session: Session,
    sub: UserSubscription,
    *,
    event_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    now = now or utc_now()
    if sub.subscription_status == SubscriptionStatus.paused:
        return False
    if not _set_status(session, sub, SubscriptionStatus.paused, event_at=event_at, now=now):
        return False
    sub.pause_start_date = now
    sub.pause_end_date = None
    return True


def mark_resumed(
    session: Session,
    sub: UserSubscription,
    *,
    event_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    now = now or utc_now()
    if sub.subscription_status != SubscriptionStatus.paused:
        return False
    if not _set_status(session, sub, SubscriptionStatus.active, event_at=event_at, now=now):
        return False
    sub.pause_end_date = now
    return True


def mark_past_due(
    session: Session,
    sub: UserSubscription,
    *,
    payment: PaymentInfo | None = None,
    event_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    """支付失败：记录 failed 流水，状态置为 past_due 并通知用户"""
    now = now or utc_now()
    tx = record_transaction(
        session, sub=sub, user_id=sub.user_id, status=PaymentStatus.failed,
        payment=payment, meta={"source": "payment.failed"}, now=now,
    )
    if tx is None:
        return False
    if not _set_status(session, sub, SubscriptionStatus.past_due, event_at=event_at, now=now):
        return False
    reason = payment.error_description if payment and payment.error_description else None
    crud.notification.create(
        session=session,
        user_id=sub.user_id,
        notification_type=NotificationType.payment_failed,
        title="Payment Failed",
        message=reason or "We could not process your payment. Please try again.",
        action_label="Retry Payment",
        meta={"subscription_id": sub.id, "error_code": payment.error_code if payment else None},
    )
    return True
