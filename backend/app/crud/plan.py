"""订阅套餐 CRUD 操作"""
from decimal import Decimal
from typing import Any

from sqlmodel import Session, select

from app.enums import PlanName
from app.models import SubscriptionPlan, utc_now


def get_active(*, session: Session, plan_id: int) -> SubscriptionPlan | None:
    """查询上架中的套餐，不存在或已下架返回 None"""
    plan = session.get(SubscriptionPlan, plan_id)
    if plan is None or not plan.is_active:
        return None
    return plan


def get_by_name(*, session: Session, plan_name: PlanName) -> SubscriptionPlan | None:
    statement = select(SubscriptionPlan).where(SubscriptionPlan.plan_name == plan_name)
    return session.exec(statement).first()


def list_active(*, session: Session) -> list[SubscriptionPlan]:
    """上架套餐列表，按价格升序"""
    statement = (
        select(SubscriptionPlan)
        .where(SubscriptionPlan.is_active == True)  # noqa: E712
        .order_by(SubscriptionPlan.plan_price_usd)
    )
    return list(session.exec(statement).all())


def upsert(*, session: Session, data: dict[str, Any]) -> SubscriptionPlan:
    """
    按套餐名称写入或更新套餐（种子数据使用）

    data 字段：plan_name, plan_price_usd, monthly_analyses_limit, description, features, is_active
    """
    plan_name = PlanName(data["plan_name"])
    plan = get_by_name(session=session, plan_name=plan_name)
    if plan is None:
        plan = SubscriptionPlan(plan_name=plan_name)
    plan.plan_price_usd = Decimal(str(data.get("plan_price_usd", "0")))
    plan.monthly_analyses_limit = int(data.get("monthly_analyses_limit", 0))
    plan.description = data.get("description")
    plan.features = list(data.get("features") or [])
    plan.is_active = bool(data.get("is_active", True))
    plan.updated_at = utc_now()
    session.add(plan)
    session.commit()
    session.refresh(plan)
    return plan
