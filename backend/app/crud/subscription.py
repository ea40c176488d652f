"""用户订阅 CRUD 操作"""
from sqlmodel import Session, col, select

from app.enums import SubscriptionStatus
from app.models import PaymentTransaction, UserSubscription


def get_active_for_user(*, session: Session, user_id: int) -> UserSubscription | None:
    """用户当前唯一的 active 订阅"""
    statement = select(UserSubscription).where(
        UserSubscription.user_id == user_id,
        UserSubscription.subscription_status == SubscriptionStatus.active,
    )
    return session.exec(statement).first()


def get_owned(*, session: Session, user_id: int, subscription_id: int) -> UserSubscription | None:
    """按 ID 查询订阅，且必须属于该用户"""
    sub = session.get(UserSubscription, subscription_id)
    if sub is None or sub.user_id != user_id:
        return None
    return sub


def get_by_external_id(
    *, session: Session, external_id: str, user_id: int | None = None
) -> UserSubscription | None:
    """按 Razorpay 订阅 ID / 支付链接 ID 查询（最新一条）"""
    statement = select(UserSubscription).where(
        UserSubscription.razorpay_subscription_id == external_id
    )
    if user_id is not None:
        statement = statement.where(UserSubscription.user_id == user_id)
    statement = statement.order_by(col(UserSubscription.created_at).desc())
    return session.exec(statement).first()


def get_latest_pending_for_user(*, session: Session, user_id: int) -> UserSubscription | None:
    statement = (
        select(UserSubscription)
        .where(
            UserSubscription.user_id == user_id,
            UserSubscription.subscription_status == SubscriptionStatus.pending,
        )
        .order_by(col(UserSubscription.created_at).desc(), col(UserSubscription.id).desc())
    )
    return session.exec(statement).first()


def find_customer_id(*, session: Session, user_id: int) -> str | None:
    """复用该用户任意订阅记录上已有的 Razorpay 客户 ID"""
    statement = (
        select(UserSubscription.razorpay_customer_id)
        .where(
            UserSubscription.user_id == user_id,
            col(UserSubscription.razorpay_customer_id).is_not(None),
        )
        .limit(1)
    )
    return session.exec(statement).first()


def list_payments(*, session: Session, user_id: int, limit: int = 50) -> list[PaymentTransaction]:
    """支付流水，按交易时间倒序"""
    statement = (
        select(PaymentTransaction)
        .where(PaymentTransaction.user_id == user_id)
        .order_by(col(PaymentTransaction.transaction_date).desc())
        .limit(limit)
    )
    return list(session.exec(statement).all())
