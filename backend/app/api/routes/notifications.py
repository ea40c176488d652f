"""
通知路由模块

拉取通知列表时会先为当前用户执行一次订阅维护（过期处理 + 到期提醒），
这样即使定时任务没有运行，用户也能及时看到到期提醒。
"""
from __future__ import annotations

from fastapi import APIRouter, Query

from app import crud
from app.api.deps import CurrentUser, SessionDep
from app.api.errors import not_found
from app.api.schemas import (
    CreateNotificationRequest,
    Message,
    NotificationData,
    NotificationPublic,
    NotificationsData,
    UnreadCountData,
)
from app.models import Notification, as_utc, utc_now
from app.services.notifications import check_expiring_subscriptions

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _to_public(notification: Notification) -> NotificationPublic:
    return NotificationPublic(
        id=notification.id,
        notification_type=notification.notification_type,
        title=notification.title,
        message=notification.message,
        action_url=notification.action_url,
        action_label=notification.action_label,
        meta=notification.meta or {},
        is_read=notification.is_read,
        read_at=as_utc(notification.read_at),
        created_at=as_utc(notification.created_at),
    )


@router.get("", response_model=NotificationsData)
def list_notifications(
    session: SessionDep,
    current_user: CurrentUser,
    limit: int = Query(default=50, ge=1, le=200),
) -> NotificationsData:
    check_expiring_subscriptions(session, user_id=current_user.id)
    rows = crud.notification.list_for_user(session=session, user_id=current_user.id, limit=limit)
    return NotificationsData(
        notifications=[_to_public(n) for n in rows],
        unread_count=crud.notification.count_unread(session=session, user_id=current_user.id),
    )


@router.get("/unread-count", response_model=UnreadCountData)
def unread_count(session: SessionDep, current_user: CurrentUser) -> UnreadCountData:
    return UnreadCountData(
        unread_count=crud.notification.count_unread(session=session, user_id=current_user.id)
    )


@router.post("/read-all", response_model=UnreadCountData)
def read_all(session: SessionDep, current_user: CurrentUser) -> UnreadCountData:
    crud.notification.mark_all_read(session=session, user_id=current_user.id)
    return UnreadCountData(unread_count=0)


@router.post("/{notification_id}/read", response_model=NotificationData)
def mark_read(
    session: SessionDep, current_user: CurrentUser, notification_id: int
) -> NotificationData:
    notification = crud.notification.get_owned(
        session=session, user_id=current_user.id, notification_id=notification_id
    )
    if notification is None:
        raise not_found("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utc_now()
        session.add(notification)
        session.commit()
        session.refresh(notification)
    return NotificationData(notification=_to_public(notification))


@router.post("", response_model=NotificationData)
def create_notification(
    session: SessionDep, current_user: CurrentUser, body: CreateNotificationRequest
) -> NotificationData:
    """创建自定义通知（客户端本地提醒同步到收件箱）"""
    notification = crud.notification.create(
        session=session,
        user_id=current_user.id,
        notification_type=body.notification_type,
        title=body.title,
        message=body.message,
        action_url=body.action_url,
        action_label=body.action_label,
        meta=body.meta,
    )
    session.commit()
    session.refresh(notification)
    return NotificationData(notification=_to_public(notification))


@router.delete("/{notification_id}", response_model=Message)
def delete_notification(
    session: SessionDep, current_user: CurrentUser, notification_id: int
) -> Message:
    notification = crud.notification.get_owned(
        session=session, user_id=current_user.id, notification_id=notification_id
    )
    if notification is None:
        raise not_found("Notification not found")
    session.delete(notification)
    session.commit()
    return Message(message="Notification deleted")
