"""
分析额度服务

- can_analyze: 分析前检查是否还有额度
- increment_usage: 分析完成后记录分析并累加已用次数

计数是“尽力而为”的：分析记录写入后，如果计数更新失败只记录日志并返回 success=false，
不会回滚已经完成的分析。
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from app import crud
from app.models import AnalysisRecord, SubscriptionPlan, User, UserSubscription, utc_now

logger = logging.getLogger(__name__)

NO_SUBSCRIPTION_MESSAGE = "No active subscription. Subscribe to a plan to start analyzing."
QUOTA_EXHAUSTED_MESSAGE = (
    "You have used all analyses for this billing cycle. Upgrade your plan or wait for renewal."
)


def can_analyze(session: Session, *, user: User) -> dict[str, Any]:
    sub = crud.subscription.get_active_for_user(session=session, user_id=user.id)
    if sub is None:
        return {
            "can_analyze": False,
            "analyses_remaining": 0,
            "subscription_status": "none",
            "plan_name": "none",
            "message": NO_SUBSCRIPTION_MESSAGE,
        }

    plan = session.get(SubscriptionPlan, sub.plan_id)
    limit = plan.monthly_analyses_limit if plan else 0
    remaining = max(limit - sub.analyses_used_this_month, 0)
    allowed = remaining > 0
    return {
        "can_analyze": allowed,
        "analyses_remaining": remaining,
        "subscription_status": sub.subscription_status.value,
        "plan_name": plan.plan_name.value if plan else "none",
        "message": f"{remaining} analyses remaining this cycle" if allowed else QUOTA_EXHAUSTED_MESSAGE,
    }


def _increment_counter(session: Session, subscription_id: int, now: datetime) -> None:
    # 原子自增，避免并发请求读后写丢失计数
    session.execute(
        update(UserSubscription)
        .where(col(UserSubscription.id) == subscription_id)
        .values(
            analyses_used_this_month=UserSubscription.analyses_used_this_month + 1,
            updated_at=now,
        )
    )
    session.commit()


def increment_usage(
    session: Session,
    *,
    user: User,
    analysis_result_id: str | None = None,
    analysis_type: str | None = None,
    overall_score: Decimal | None = None,
) -> dict[str, Any]:
    sub = crud.subscription.get_active_for_user(session=session, user_id=user.id)
    if sub is None:
        return {"success": False, "error": NO_SUBSCRIPTION_MESSAGE}

    plan = session.get(SubscriptionPlan, sub.plan_id)
    limit = plan.monthly_analyses_limit if plan else 0
    if sub.analyses_used_this_month >= limit:
        return {"success": False, "error": QUOTA_EXHAUSTED_MESSAGE}

    now = utc_now()
    record = AnalysisRecord(
        user_id=user.id,
        subscription_id=sub.id,
        analysis_type=analysis_type or "muscle_analysis",
        analysis_result_id=analysis_result_id,
        overall_score=overall_score,
        created_at=now,
    )
    session.add(record)
    session.commit()
    session.refresh(record)

    try:
        _increment_counter(session, sub.id, now)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to increment usage counter for subscription %s", sub.id)
        return {
            "success": False,
            "error": "Analysis saved but usage could not be updated",
            "analysis_id": record.id,
        }

    session.refresh(sub)
    return {
        "success": True,
        "analysis_id": record.id,
        "analyses_used": sub.analyses_used_this_month,
        "analyses_remaining": max(limit - sub.analyses_used_this_month, 0),
    }


def list_history(session: Session, *, user: User, limit: int = 30) -> list[AnalysisRecord]:
    statement = (
        select(AnalysisRecord)
        .where(AnalysisRecord.user_id == user.id)
        .order_by(col(AnalysisRecord.created_at).desc())
        .limit(limit)
    )
    return list(session.exec(statement).all())


def _scores_for_day(session: Session, user_id: int, day: date) -> tuple[int, list[Decimal]]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = start + timedelta(days=1)
    rows = session.exec(
        select(AnalysisRecord).where(
            AnalysisRecord.user_id == user_id,
            col(AnalysisRecord.created_at) >= start,
            col(AnalysisRecord.created_at) < end,
        )
    ).all()
    scores = [Decimal(r.overall_score) for r in rows if r.overall_score is not None]
    return len(rows), scores


def _rounded_average(scores: list[Decimal]) -> int:
    if not scores:
        return 0
    avg = sum(scores, Decimal("0")) / len(scores)
    return int(avg.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def daily_stats(session: Session, *, user: User, day: date) -> dict[str, Any]:
    """
    某天的分析统计（UTC 日期）

    improvement 为当天平均分相对前一天平均分的百分比变化（取整），
    任一天没有数据时为 0。
    """
    count, scores = _scores_for_day(session, user.id, day)
    _, prev_scores = _scores_for_day(session, user.id, day - timedelta(days=1))

    average = _rounded_average(scores)
    previous = _rounded_average(prev_scores)
    improvement = 0
    if count > 0 and previous > 0:
        improvement = int(
            (Decimal(average - previous) / previous * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
    return {
        "date": day,
        "analyses_count": count,
        "average_score": average,
        "best_score": max(scores) if scores else Decimal("0"),
        "previous_day_score": previous,
        "improvement": improvement,
    }
