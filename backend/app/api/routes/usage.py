"""
分析额度路由模块

- can-analyze: 分析前检查额度
- increment: 分析完成后记录并累加次数
- history / stats: 分析历史和每日统计
"""
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Query

from app.api.deps import CurrentUser, SessionDep
from app.api.schemas import (
    AnalysisHistoryData,
    AnalysisPublic,
    CanAnalyzeData,
    DailyStatsData,
    IncrementUsageData,
    IncrementUsageRequest,
)
from app.models import as_utc, utc_now
from app.services import usage

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/can-analyze", response_model=CanAnalyzeData)
def can_analyze(session: SessionDep, current_user: CurrentUser) -> CanAnalyzeData:
    return CanAnalyzeData(**usage.can_analyze(session, user=current_user))


@router.post("/increment", response_model=IncrementUsageData)
def increment(
    session: SessionDep, current_user: CurrentUser, body: IncrementUsageRequest
) -> IncrementUsageData:
    """
    记录一次分析

    没有有效订阅或额度用完时返回 200 + success=false，前端据此提示升级。
    """
    result = usage.increment_usage(
        session,
        user=current_user,
        analysis_result_id=body.analysis_result_id,
        analysis_type=body.analysis_type,
        overall_score=body.overall_score,
    )
    return IncrementUsageData(**result)


@router.get("/history", response_model=AnalysisHistoryData)
def history(
    session: SessionDep,
    current_user: CurrentUser,
    limit: int = Query(default=30, ge=1, le=200),
) -> AnalysisHistoryData:
    records = usage.list_history(session, user=current_user, limit=limit)
    items = [
        AnalysisPublic(
            id=r.id,
            analysis_type=r.analysis_type,
            analysis_result_id=r.analysis_result_id,
            overall_score=r.overall_score,
            created_at=as_utc(r.created_at),
        )
        for r in records
    ]
    return AnalysisHistoryData(analyses=items, count=len(items))


@router.get("/stats", response_model=DailyStatsData)
def stats(
    session: SessionDep,
    current_user: CurrentUser,
    day: date | None = Query(default=None, alias="date"),
) -> DailyStatsData:
    """某天（UTC）的分析统计，默认今天"""
    return DailyStatsData(**usage.daily_stats(session, user=current_user, day=day or utc_now().date()))
