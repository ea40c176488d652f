"""
订阅生命周期服务

- create_subscription: 创建支付链接和 pending 订阅
- cancel_subscription: 取消订阅（宽限期 / 立即生效，按部署配置）
- change_plan: 更换套餐（旧订阅立即取消，新订阅 pending 等待支付）

支付网关调用全部在写库之前完成，网关失败时不会留下任何订阅记录。
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from app import crud
from app.api.errors import conflict, invalid_state, no_op, not_found
from app.core.config import settings
from app.core.snowflake import generate_id
from app.enums import CancellationPolicy, NotificationType, SubscriptionStatus
from app.integrations.razorpay import RazorpayClient, RazorpayPaymentLink
from app.models import SubscriptionPlan, User, UserSubscription, as_utc, utc_now
from app.services.reconciliation import billing_cycle

logger = logging.getLogger(__name__)

APP_NAME = "Muscle AI"


def to_minor_units(price_usd: Decimal) -> int:
    """美元价格按固定汇率折算为结算币种，取整后转为最小单位（x100）"""
    whole = (Decimal(price_usd) * settings.USD_TO_SETTLEMENT_RATE).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(whole) * 100


def callback_url() -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}{settings.API_V1_STR}/subscription/payment-callback"


def _customer_payload(user: User) -> dict[str, str]:
    return {
        "name": user.display_name,
        "email": user.email,
        "contact": user.phone or settings.DEFAULT_CUSTOMER_CONTACT,
    }


def _resolve_customer_id(
    session: Session, gateway: RazorpayClient, user: User, known: str | None = None
) -> str:
    customer_id = known or crud.subscription.find_customer_id(session=session, user_id=user.id)
    if customer_id:
        return customer_id
    customer = gateway.get_or_create_customer(
        name=user.display_name, email=user.email, contact=user.phone or ""
    )
    return customer.id


def _create_link(
    gateway: RazorpayClient,
    *,
    user: User,
    plan: SubscriptionPlan,
    subscription_id: int,
    description: str,
    extra_notes: dict[str, str] | None = None,
) -> RazorpayPaymentLink:
    notes = {
        "user_id": str(user.id),
        "plan_id": str(plan.id),
        "plan_name": plan.plan_name.value,
        "subscription_id": str(subscription_id),
        "app": APP_NAME,
    }
    if extra_notes:
        notes.update(extra_notes)
    return gateway.create_payment_link(
        amount=to_minor_units(plan.plan_price_usd),
        currency=settings.SETTLEMENT_CURRENCY,
        description=description,
        customer=_customer_payload(user),
        notes=notes,
        callback_url=callback_url(),
        reference_id=str(subscription_id),
    )


def _new_pending(
    *,
    subscription_id: int,
    user: User,
    plan: SubscriptionPlan,
    link: RazorpayPaymentLink,
    customer_id: str,
    now: datetime,
    meta: dict[str, Any] | None = None,
) -> UserSubscription:
    start, end = billing_cycle(now)
    return UserSubscription(
        id=subscription_id,
        user_id=user.id,
        plan_id=plan.id,
        subscription_status=SubscriptionStatus.pending,
        razorpay_subscription_id=link.id,
        razorpay_customer_id=customer_id,
        current_billing_cycle_start=start,
        current_billing_cycle_end=end,
        analyses_used_this_month=0,
        auto_renewal_enabled=True,
        meta=meta or {},
        created_at=now,
        updated_at=now,
    )


def create_subscription(
    session: Session, gateway: RazorpayClient, *, user: User, plan_id: int
) -> tuple[UserSubscription, RazorpayPaymentLink]:
    plan = crud.plan.get_active(session=session, plan_id=plan_id)
    if plan is None:
        raise not_found("Invalid plan ID")
    if crud.subscription.get_active_for_user(session=session, user_id=user.id):
        raise conflict("User already has an active subscription")

    customer_id = _resolve_customer_id(session, gateway, user)
    subscription_id = generate_id()
    link = _create_link(
        gateway,
        user=user,
        plan=plan,
        subscription_id=subscription_id,
        description=f"{plan.plan_name.value} Plan - {plan.monthly_analyses_limit} analyses/month",
    )

    sub = _new_pending(
        subscription_id=subscription_id,
        user=user,
        plan=plan,
        link=link,
        customer_id=customer_id,
        now=utc_now(),
    )
    session.add(sub)
    session.commit()
    session.refresh(sub)
    logger.info("Payment link %s created for subscription %s", link.id, sub.id)
    return sub, link


def cancel_subscription(
    session: Session, gateway: RazorpayClient, *, user: User, subscription_id: int
) -> UserSubscription:
    sub = crud.subscription.get_owned(session=session, user_id=user.id, subscription_id=subscription_id)
    if sub is None:
        raise not_found("Subscription not found. Please check your subscription ID.")

    if sub.cancelled_at is not None or sub.subscription_status == SubscriptionStatus.cancelled:
        raise conflict("This subscription has already been cancelled.")
    if sub.subscription_status == SubscriptionStatus.expired:
        raise invalid_state("This subscription has expired and cannot be cancelled.")
    if sub.subscription_status not in (SubscriptionStatus.active, SubscriptionStatus.pending):
        raise invalid_state(f"Cannot cancel subscription with status: {sub.subscription_status.value}")

    external_id = sub.razorpay_subscription_id or ""
    if external_id.startswith("sub_"):
        gateway.cancel_subscription(external_id, at_cycle_end=True)
    else:
        logger.info("Subscription %s has no recurring Razorpay subscription, skipping provider cancel", sub.id)

    now = utc_now()
    sub.cancelled_at = now
    sub.auto_renewal_enabled = False
    sub.updated_at = now
    if settings.CANCELLATION_POLICY == CancellationPolicy.immediate:
        sub.subscription_status = SubscriptionStatus.cancelled
    session.add(sub)

    access_until = as_utc(sub.current_billing_cycle_end)
    crud.notification.create(
        session=session,
        user_id=user.id,
        notification_type=NotificationType.subscription_cancelled,
        title="Subscription Cancelled",
        message=cancellation_message(access_until),
        meta={"subscription_id": sub.id},
    )
    session.commit()
    session.refresh(sub)
    logger.info("Subscription %s cancelled (%s)", sub.id, settings.CANCELLATION_POLICY.value)
    return sub


def cancellation_message(access_until: datetime | None) -> str:
    if settings.CANCELLATION_POLICY == CancellationPolicy.immediate or access_until is None:
        return "Subscription cancelled successfully."
    return (
        "Subscription cancelled successfully. "
        f"You will have access until {access_until.date().isoformat()}."
    )


def change_plan(
    session: Session, gateway: RazorpayClient, *, user: User, new_plan_id: int
) -> tuple[UserSubscription, UserSubscription, RazorpayPaymentLink]:
    """
    更换套餐

    Returns:
        (新订阅, 旧订阅, 支付链接)
    """
    plan = crud.plan.get_active(session=session, plan_id=new_plan_id)
    if plan is None:
        raise not_found("Invalid plan ID")

    current = crud.subscription.get_active_for_user(session=session, user_id=user.id)
    if current is None:
        raise invalid_state("No active subscription found. Please create a new subscription instead.")
    if current.plan_id == plan.id:
        raise no_op("You are already subscribed to this plan")

    customer_id = _resolve_customer_id(session, gateway, user, known=current.razorpay_customer_id)
    subscription_id = generate_id()
    link = _create_link(
        gateway,
        user=user,
        plan=plan,
        subscription_id=subscription_id,
        description=f"Plan Change: {plan.plan_name.value} Plan - {plan.monthly_analyses_limit} analyses/month",
        extra_notes={"is_plan_change": "true", "old_subscription_id": str(current.id)},
    )

    now = utc_now()
    current.subscription_status = SubscriptionStatus.cancelled
    current.auto_renewal_enabled = False
    current.cancelled_at = now
    current.updated_at = now
    session.add(current)

    new_sub = _new_pending(
        subscription_id=subscription_id,
        user=user,
        plan=plan,
        link=link,
        customer_id=customer_id,
        now=now,
        meta={"old_subscription_id": current.id},
    )
    session.add(new_sub)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.exception("Failed to persist plan change for user %s", user.id)
        raise conflict("Subscription changed concurrently, please retry")
    session.refresh(new_sub)
    session.refresh(current)
    logger.info("Plan change %s -> %s initiated for user %s", current.id, new_sub.id, user.id)
    return new_sub, current, link


def subscription_details(session: Session, *, user: User) -> dict[str, Any] | None:
    """当前有效订阅详情，没有时返回 None"""
    sub = crud.subscription.get_active_for_user(session=session, user_id=user.id)
    if sub is None:
        return None
    plan = session.get(SubscriptionPlan, sub.plan_id)
    limit = plan.monthly_analyses_limit if plan else 0
    return {
        "subscription_id": sub.id,
        "plan_name": plan.plan_name.value if plan else None,
        "plan_price": plan.plan_price_usd if plan else None,
        "subscription_status": sub.subscription_status.value,
        "analyses_used": sub.analyses_used_this_month,
        "analyses_limit": limit,
        "analyses_remaining": max(limit - sub.analyses_used_this_month, 0),
        "cycle_start": as_utc(sub.current_billing_cycle_start),
        "cycle_end": as_utc(sub.current_billing_cycle_end),
        "auto_renewal": sub.auto_renewal_enabled,
        "cancelled_at": as_utc(sub.cancelled_at),
        "razorpay_subscription_id": sub.razorpay_subscription_id,
    }
