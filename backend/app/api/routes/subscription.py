"""
订阅路由模块

- 创建 / 取消 / 更换套餐
- Razorpay webhook、支付链接回跳、前端支付校验（三者都通过 reconciliation 修改订阅状态）
- 套餐列表、当前订阅详情、支付流水
"""
from __future__ import annotations

import html
import json
import logging
from typing import Any

from fastapi import APIRouter, Header, Query
from fastapi.responses import HTMLResponse
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from app import crud
from app.api.deps import (
    CurrentUser,
    GatewayDep,
    RawBodyDep,
    SessionDep,
    ensure_same_user,
)
from app.api.errors import AppError, conflict, not_found, unauthorized, validation_error
from app.api.schemas import (
    CancelledSubscription,
    CancelSubscriptionData,
    CancelSubscriptionRequest,
    ChangePlanData,
    ChangePlanRequest,
    CreateSubscriptionData,
    CreateSubscriptionRequest,
    PaymentPublic,
    PaymentsData,
    PlanPublic,
    PlansData,
    SubscriptionDetails,
    SubscriptionDetailsData,
    VerifiedSubscription,
    VerifyPaymentData,
    VerifyPaymentRequest,
    WebhookAck,
)
from app.core import security
from app.core.config import settings
from app.models import SubscriptionPlan, UserSubscription, WebhookEvent, as_utc
from app.services import razorpay_webhook, reconciliation, subscriptions
from app.services.reconciliation import PaymentInfo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.post("/create", response_model=CreateSubscriptionData)
def create(
    session: SessionDep,
    gateway: GatewayDep,
    current_user: CurrentUser,
    body: CreateSubscriptionRequest,
) -> CreateSubscriptionData:
    """
    创建订阅

    生成 Razorpay 支付链接，并写入一条 pending 订阅，支付成功后由 webhook / 回跳激活。
    """
    ensure_same_user(body.user_id, current_user)
    sub, link = subscriptions.create_subscription(
        session, gateway, user=current_user, plan_id=body.plan_id
    )
    return CreateSubscriptionData(
        subscription_id=sub.id, payment_link_id=link.id, short_url=link.short_url
    )


@router.post("/cancel", response_model=CancelSubscriptionData)
def cancel(
    session: SessionDep,
    gateway: GatewayDep,
    current_user: CurrentUser,
    body: CancelSubscriptionRequest,
) -> CancelSubscriptionData:
    sub = subscriptions.cancel_subscription(
        session, gateway, user=current_user, subscription_id=body.subscription_id
    )
    access_until = as_utc(sub.current_billing_cycle_end)
    return CancelSubscriptionData(
        message=subscriptions.cancellation_message(access_until),
        subscription=CancelledSubscription(
            id=sub.id,
            status=sub.subscription_status.value,
            access_until=access_until,
            cancelled=True,
            auto_renewal=sub.auto_renewal_enabled,
        ),
    )


@router.post("/change-plan", response_model=ChangePlanData)
def change_plan(
    session: SessionDep,
    gateway: GatewayDep,
    current_user: CurrentUser,
    body: ChangePlanRequest,
) -> ChangePlanData:
    """
    更换套餐

    旧订阅立即取消，新订阅 pending，支付完成后激活。
    """
    ensure_same_user(body.user_id, current_user)
    new_sub, old_sub, link = subscriptions.change_plan(
        session, gateway, user=current_user, new_plan_id=body.new_plan_id
    )
    return ChangePlanData(
        subscription_id=new_sub.id,
        old_subscription_id=old_sub.id,
        payment_link_id=link.id,
        short_url=link.short_url,
        message="Plan change initiated. Complete the payment to activate your new plan.",
    )


@router.post("/verify-payment", response_model=VerifyPaymentData)
def verify_payment(
    session: SessionDep,
    current_user: CurrentUser,
    body: VerifyPaymentRequest,
) -> VerifyPaymentData:
    """
    前端支付完成后校验签名并激活订阅

    签名：HMAC-SHA256(payment_id|subscription_id, RAZORPAY_KEY_SECRET)
    """
    ensure_same_user(body.user_id, current_user)
    if not security.verify_payment_signature(
        body.razorpay_payment_id, body.razorpay_subscription_id, body.razorpay_signature
    ):
        logger.warning("Invalid payment signature for user %s", current_user.id)
        raise unauthorized("Invalid payment signature")

    sub = crud.subscription.get_by_external_id(
        session=session, external_id=body.razorpay_subscription_id, user_id=current_user.id
    )
    if sub is None:
        raise not_found("Subscription not found")

    reconciliation.activate(
        session,
        sub,
        payment=PaymentInfo(
            payment_id=body.razorpay_payment_id,
            order_id=body.razorpay_subscription_id,
            signature=body.razorpay_signature,
        ),
        source="verify_payment",
    )
    session.commit()
    session.refresh(sub)

    plan = session.get(SubscriptionPlan, sub.plan_id)
    return VerifyPaymentData(
        verified=True,
        subscription=VerifiedSubscription(
            id=sub.id,
            plan_name=plan.plan_name.value if plan else None,
            status=sub.subscription_status.value,
        ),
    )


@router.post("/webhook/razorpay", response_model=WebhookAck)
def razorpay_webhook_endpoint(
    session: SessionDep,
    raw_body: RawBodyDep,
    x_razorpay_signature: str | None = Header(default=None),
    x_razorpay_event_id: str | None = Header(default=None),
) -> WebhookAck:
    """
    Razorpay webhook

    1. 用原始请求体校验 X-Razorpay-Signature，失败返回 400 且不写任何数据
    2. 以 X-Razorpay-Event-Id 去重，重复投递直接确认
    3. 分发事件，统一提交
    """
    if not security.verify_webhook_signature(raw_body, x_razorpay_signature):
        logger.warning("Razorpay webhook rejected: invalid signature")
        raise unauthorized("Invalid webhook signature", status_code=400)

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise validation_error("Invalid webhook payload")
    if not isinstance(payload, dict):
        raise validation_error("Invalid webhook payload")

    event_type = str(payload.get("event") or "")

    # Razorpay 重试时使用相同的 X-Razorpay-Event-Id
    if x_razorpay_event_id:
        try:
            session.add(
                WebhookEvent(event_id=x_razorpay_event_id, event_type=event_type, payload=payload)
            )
            session.flush()
        except IntegrityError:
            session.rollback()
            logger.info("Duplicate Razorpay event %s acknowledged", x_razorpay_event_id)
            return WebhookAck(event=event_type, duplicate=True)

    razorpay_webhook.handle_event(session, payload)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.exception("Razorpay event %s conflicted with concurrent update", event_type)
        raise conflict("Subscription state changed concurrently, please retry")
    return WebhookAck(event=event_type)


# ============================================================
# 支付链接回跳（浏览器访问，返回 HTML）
# ============================================================

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<style>
body {{ font-family: -apple-system, sans-serif; text-align: center; padding: 48px 24px; }}
h1 {{ color: {color}; }}
</style>
</head>
<body>
<h1>{title}</h1>
<p>{message}</p>
<p>You can close this window and return to {app}.</p>
</body>
</html>"""

_PAGE_COLORS = {
    "success": "#2E7D32",
    "pending": "#F9A825",
    "failed": "#C62828",
    "error": "#C62828",
}


def _render_page(kind: str, title: str, message: str, status_code: int = 200) -> HTMLResponse:
    content = _PAGE_TEMPLATE.format(
        title=html.escape(title),
        message=html.escape(message),
        color=_PAGE_COLORS.get(kind, "#333333"),
        app=html.escape(subscriptions.APP_NAME),
    )
    return HTMLResponse(content=content, status_code=status_code)


def _subscription_for_callback(
    session: Session, link_id: str, reference_id: str
) -> UserSubscription | None:
    sub = crud.subscription.get_by_external_id(session=session, external_id=link_id)
    if sub is not None:
        return sub
    # reference_id 为创建支付链接时预分配的订阅 ID
    try:
        return session.get(UserSubscription, int(reference_id))
    except ValueError:
        return None


@router.get("/payment-callback", response_class=HTMLResponse)
def payment_callback(
    session: SessionDep,
    gateway: GatewayDep,
    razorpay_payment_id: str | None = Query(default=None),
    razorpay_payment_link_id: str | None = Query(default=None),
    razorpay_payment_link_reference_id: str | None = Query(default=None),
    razorpay_payment_link_status: str | None = Query(default=None),
    razorpay_signature: str | None = Query(default=None),
) -> HTMLResponse:
    """
    支付链接完成后的浏览器回跳

    校验回跳签名后，以网关查询到的支付链接状态为准，只有 paid 才激活。
    """
    if not (razorpay_payment_id and razorpay_payment_link_id and razorpay_payment_link_status):
        return _render_page("error", "Invalid Request", "Missing payment parameters.", 400)

    reference_id = razorpay_payment_link_reference_id or ""
    if not security.verify_callback_signature(
        razorpay_payment_link_id,
        reference_id,
        razorpay_payment_link_status,
        razorpay_payment_id,
        razorpay_signature,
    ):
        logger.warning("Invalid callback signature for link %s", razorpay_payment_link_id)
        return _render_page("error", "Verification Failed", "We could not verify this payment.", 400)

    sub = _subscription_for_callback(session, razorpay_payment_link_id, reference_id)
    if sub is None:
        logger.warning("Callback for unknown payment link %s", razorpay_payment_link_id)
        return _render_page("error", "Subscription Not Found", "We could not find your subscription.", 404)

    try:
        link = gateway.fetch_payment_link(razorpay_payment_link_id)
    except AppError as exc:
        logger.error("Failed to confirm payment link %s: %s", razorpay_payment_link_id, exc.message)
        return _render_page(
            "pending",
            "Payment Processing",
            "We could not confirm your payment yet. Your subscription will activate automatically once it is confirmed.",
            502,
        )

    if link.status == "paid":
        try:
            reconciliation.activate(
                session,
                sub,
                payment=PaymentInfo(
                    payment_id=razorpay_payment_id,
                    amount=link.amount,
                    currency=settings.SETTLEMENT_CURRENCY,
                    order_id=razorpay_payment_link_id,
                    signature=razorpay_signature,
                ),
                source="payment_callback",
            )
            session.commit()
        except IntegrityError:
            # webhook 同时在激活同一订阅，以 webhook 的结果为准
            session.rollback()
            logger.exception("Callback activation for link %s conflicted", razorpay_payment_link_id)
            return _render_page(
                "pending",
                "Payment Processing",
                "Your payment was received. Your subscription will activate in a moment.",
            )
        return _render_page("success", "Payment Successful", "Your subscription is now active.")

    if link.status in ("created", "partially_paid"):
        return _render_page(
            "pending",
            "Payment Pending",
            "Your payment is being processed. Your subscription will activate once it is confirmed.",
        )

    logger.info("Payment link %s reported status %s", link.id, link.status)
    return _render_page("failed", "Payment Failed", "Your payment was not completed. Please try again.")


# ============================================================
# 查询
# ============================================================


@router.get("/plans", response_model=PlansData)
def plans(session: SessionDep) -> PlansData:
    """上架套餐列表（按价格升序，不需要登录）"""
    return PlansData(
        plans=[
            PlanPublic(
                id=plan.id,
                plan_name=plan.plan_name.value,
                plan_price_usd=plan.plan_price_usd,
                monthly_analyses_limit=plan.monthly_analyses_limit,
                description=plan.description,
                features=list(plan.features or []),
            )
            for plan in crud.plan.list_active(session=session)
        ]
    )


@router.get("/details", response_model=SubscriptionDetailsData)
def details(session: SessionDep, current_user: CurrentUser) -> SubscriptionDetailsData:
    data: dict[str, Any] | None = subscriptions.subscription_details(session, user=current_user)
    return SubscriptionDetailsData(subscription=SubscriptionDetails(**data) if data else None)


@router.get("/payments", response_model=PaymentsData)
def payments(
    session: SessionDep,
    current_user: CurrentUser,
    limit: int = Query(default=50, ge=1, le=200),
) -> PaymentsData:
    rows = crud.subscription.list_payments(session=session, user_id=current_user.id, limit=limit)
    items = [
        PaymentPublic(
            id=tx.id,
            subscription_id=tx.subscription_id,
            razorpay_payment_id=tx.razorpay_payment_id,
            amount=tx.amount,
            currency=tx.currency,
            amount_usd=tx.amount_usd,
            payment_status=tx.payment_status,
            payment_method=tx.payment_method,
            error_description=tx.error_description,
            transaction_date=as_utc(tx.transaction_date),
        )
        for tx in rows
    ]
    return PaymentsData(payments=items, count=len(items))
