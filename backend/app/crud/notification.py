"""通知 CRUD 操作"""
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, col, select

from app.enums import NotificationType
from app.models import Notification, utc_now


def create(
    *,
    session: Session,
    user_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    action_url: str | None = None,
    action_label: str | None = None,
    meta: dict[str, Any] | None = None,
) -> Notification:
    """创建通知（只 add，不提交，由调用方决定事务边界）"""
    notification = Notification(
        user_id=user_id,
        notification_type=notification_type,
        title=title,
        message=message,
        action_url=action_url,
        action_label=action_label,
        meta=meta or {},
    )
    session.add(notification)
    return notification


def list_for_user(*, session: Session, user_id: int, limit: int = 50) -> list[Notification]:
    statement = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(col(Notification.created_at).desc(), col(Notification.id).desc())
        .limit(limit)
    )
    return list(session.exec(statement).all())


def count_unread(*, session: Session, user_id: int) -> int:
    statement = select(func.count()).select_from(Notification).where(
        Notification.user_id == user_id,
        Notification.is_read == False,  # noqa: E712
    )
    return int(session.exec(statement).one())


def get_owned(*, session: Session, user_id: int, notification_id: int) -> Notification | None:
    notification = session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        return None
    return notification


def mark_all_read(*, session: Session, user_id: int) -> int:
    """全部标记已读，返回更新条数"""
    unread = session.exec(
        select(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        )
    ).all()
    now = utc_now()
    for notification in unread:
        notification.is_read = True
        notification.read_at = now
        session.add(notification)
    session.commit()
    return len(unread)


def exists_for_subscription(
    *, session: Session, user_id: int, notification_type: NotificationType, key: str
) -> bool:
    """
    是否已针对某个订阅周期发送过同类通知

    key 存放在 metadata.dedupe_key 中，在 Python 侧比较以兼容 SQLite/Postgres 的 JSON 差异。
    """
    rows = session.exec(
        select(Notification).where(
            Notification.user_id == user_id,
            Notification.notification_type == notification_type,
        )
    ).all()
    return any((n.meta or {}).get("dedupe_key") == key for n in rows)
