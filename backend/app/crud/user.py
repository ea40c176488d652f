"""用户 CRUD 操作"""
from sqlmodel import Session, select

from app.models import User


def get_by_email(*, session: Session, email: str) -> User | None:
    """根据邮箱查询用户"""
    statement = select(User).where(User.email == email)
    return session.exec(statement).first()


def create(
    *,
    session: Session,
    email: str,
    full_name: str | None = None,
    phone: str | None = None,
    user_id: int | None = None,
) -> User:
    """创建用户镜像记录（user_id 为空时自动生成）"""
    user = User(email=email, full_name=full_name, phone=phone)
    if user_id is not None:
        user.id = user_id
    session.add(user)
    session.commit()
    session.refresh(user)
    return user
