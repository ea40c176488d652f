"""
Razorpay Webhook 事件分发

文档: https://razorpay.com/docs/webhooks/payloads/

事件结构：
    {
        "entity": "event",
        "event": "payment_link.paid",
        "payload": {
            "payment_link": {"entity": {...}},
            "payment": {"entity": {...}},
            "subscription": {"entity": {...}}
        },
        "created_at": 1700000000
    }

签名校验和事件去重在路由层完成，这里只负责定位订阅并调用对账服务。
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from sqlmodel import Session

from app import crud
from app.models import UserSubscription
from app.services import reconciliation
from app.services.reconciliation import PaymentInfo

logger = logging.getLogger(__name__)


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    section = (payload.get("payload") or {}).get(name) or {}
    entity = section.get("entity") if isinstance(section, dict) else None
    return entity if isinstance(entity, dict) else {}


def _notes(entity: dict[str, Any]) -> dict[str, Any]:
    # Razorpay 在 notes 为空时返回 []
    notes = entity.get("notes")
    return notes if isinstance(notes, dict) else {}


def _event_time(payload: dict[str, Any]) -> datetime | None:
    created_at = payload.get("created_at")
    if created_at is None:
        return None
    try:
        return datetime.fromtimestamp(int(created_at), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return None


def resolve_payment_subscription(
    session: Session, payment: dict[str, Any], *, fallback_to_pending: bool = True
) -> UserSubscription | None:
    """
    根据支付实体定位订阅

    查找顺序：
    1. notes.subscription_id（创建支付链接时写入的本地订阅 ID）
    2. 支付实体上的 Razorpay 订阅 ID 或支付链接 ID
    3. notes.user_id 最近一条 pending 订阅
    """
    notes = _notes(payment)

    sub_id = _as_int(notes.get("subscription_id"))
    if sub_id is not None:
        sub = session.get(UserSubscription, sub_id)
        if sub is not None:
            return sub

    candidates = (
        payment.get("subscription_id"),
        payment.get("payment_link_id"),
        notes.get("payment_link_id"),
    )
    for external_id in candidates:
        if external_id:
            sub = crud.subscription.get_by_external_id(session=session, external_id=str(external_id))
            if sub is not None:
                return sub

    user_id = _as_int(notes.get("user_id"))
    if fallback_to_pending and user_id is not None:
        return crud.subscription.get_latest_pending_for_user(session=session, user_id=user_id)
    return None


def _on_payment_link_paid(session: Session, payload: dict[str, Any], event_at: datetime | None) -> None:
    link = _entity(payload, "payment_link")
    payment = _entity(payload, "payment")
    sub = None
    if link.get("id"):
        sub = crud.subscription.get_by_external_id(session=session, external_id=str(link["id"]))
    if sub is None and payment:
        sub = resolve_payment_subscription(session, payment)
    if sub is None:
        logger.warning("payment_link.paid: no subscription for link %s", link.get("id"))
        return

    info = PaymentInfo.from_entity(payment)
    if info is not None and not info.order_id:
        info = replace(info, order_id=link.get("id"))
    reconciliation.activate(session, sub, payment=info, event_at=event_at, source="payment_link.paid")


def _on_payment_captured(session: Session, payload: dict[str, Any], event_at: datetime | None) -> None:
    payment = _entity(payload, "payment")
    sub = resolve_payment_subscription(session, payment)
    if sub is None:
        logger.warning("payment.captured: no subscription for payment %s", payment.get("id"))
        return
    reconciliation.activate(
        session, sub, payment=PaymentInfo.from_entity(payment), event_at=event_at, source="payment.captured"
    )


def _on_payment_failed(session: Session, payload: dict[str, Any], event_at: datetime | None) -> None:
    payment = _entity(payload, "payment")
    sub = resolve_payment_subscription(session, payment, fallback_to_pending=True)
    if sub is None:
        logger.warning("payment.failed: no subscription for payment %s", payment.get("id"))
        return
    reconciliation.mark_past_due(session, sub, payment=PaymentInfo.from_entity(payment), event_at=event_at)


def _subscription_for_event(session: Session, payload: dict[str, Any]) -> UserSubscription | None:
    entity = _entity(payload, "subscription")
    external_id = entity.get("id")
    if not external_id:
        return None
    sub = crud.subscription.get_by_external_id(session=session, external_id=str(external_id))
    if sub is None:
        logger.warning("No local subscription for Razorpay subscription %s", external_id)
    return sub


def _on_subscription_event(
    session: Session, event_type: str, payload: dict[str, Any], event_at: datetime | None
) -> None:
    sub = _subscription_for_event(session, payload)
    if sub is None:
        return

    if event_type == "subscription.activated":
        reconciliation.activate(session, sub, event_at=event_at, source=event_type)
    elif event_type == "subscription.charged":
        info = PaymentInfo.from_entity(_entity(payload, "payment"))
        reconciliation.roll_cycle(session, sub, payment=info, event_at=event_at)
    elif event_type == "subscription.completed":
        reconciliation.mark_expired(session, sub, event_at=event_at)
    elif event_type == "subscription.cancelled":
        reconciliation.mark_cancelled(session, sub, event_at=event_at)
    elif event_type == "subscription.paused":
        reconciliation.mark_paused(session, sub, event_at=event_at)
    elif event_type == "subscription.resumed":
        reconciliation.mark_resumed(session, sub, event_at=event_at)


_SUBSCRIPTION_EVENTS = {
    "subscription.activated",
    "subscription.charged",
    "subscription.completed",
    "subscription.cancelled",
    "subscription.paused",
    "subscription.resumed",
}


def handle_event(session: Session, payload: dict[str, Any]) -> str:
    """
    处理一条已通过签名校验的 webhook 事件

    未知事件只记录日志，不视为错误。不提交事务。

    Returns:
        事件类型
    """
    event_type = str(payload.get("event") or "")
    event_at = _event_time(payload)
    logger.info("Razorpay webhook received: %s", event_type)

    if event_type == "payment_link.paid":
        _on_payment_link_paid(session, payload, event_at)
    elif event_type == "payment.captured":
        _on_payment_captured(session, payload, event_at)
    elif event_type == "payment.failed":
        _on_payment_failed(session, payload, event_at)
    elif event_type in _SUBSCRIPTION_EVENTS:
        _on_subscription_event(session, event_type, payload, event_at)
    else:
        logger.info("Unhandled Razorpay event: %s", event_type)
    return event_type

