"""
连续打卡路由模块
"""
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Query

from app.api.deps import CurrentUser, SessionDep, StreakCacheDep
from app.api.schemas import (
    Message,
    MilestonePublic,
    StreakDataPublic,
    StreakMilestonesData,
    StreakUpdateData,
)
from app.services.streak import (
    StreakMilestone,
    StreakService,
    get_next_milestone,
    get_streak_milestones,
    get_streak_motivation,
)

router = APIRouter(prefix="/streak", tags=["streak"])


def _milestone(milestone: StreakMilestone | None) -> MilestonePublic | None:
    return MilestonePublic(**asdict(milestone)) if milestone else None


@router.get("", response_model=StreakDataPublic)
def get_streak(
    session: SessionDep, cache: StreakCacheDep, current_user: CurrentUser
) -> StreakDataPublic:
    data = StreakService(session, cache).get_streak_data(current_user.id)
    return StreakDataPublic(
        current_streak=data.current_streak,
        longest_streak=data.longest_streak,
        last_analysis_date=data.last_analysis_date,
        streak_freeze_count=data.streak_freeze_count,
        days_since_last=data.days_since_last,
        streak_status=data.streak_status,
        motivation=get_streak_motivation(data),
        next_milestone=_milestone(get_next_milestone(data.current_streak)),
    )


@router.post("/update", response_model=StreakUpdateData)
def update_streak(
    session: SessionDep, cache: StreakCacheDep, current_user: CurrentUser
) -> StreakUpdateData:
    """完成一次分析后调用，同一天多次调用不会重复累加"""
    result = StreakService(session, cache).update_streak(current_user.id)
    return StreakUpdateData(
        current_streak=result.snapshot.current_streak,
        longest_streak=result.snapshot.longest_streak,
        last_analysis_date=result.snapshot.last_analysis_date,
        is_new_record=result.is_new_record,
        milestone_achieved=_milestone(result.milestone_achieved),
    )


@router.post("/reset", response_model=Message)
def reset_streak(
    session: SessionDep, cache: StreakCacheDep, current_user: CurrentUser
) -> Message:
    StreakService(session, cache).reset_streak(current_user.id)
    return Message(message="Streak reset")


@router.get("/milestones", response_model=StreakMilestonesData)
def milestones(streak: int = Query(default=0, ge=0)) -> StreakMilestonesData:
    return StreakMilestonesData(
        streak=streak,
        achieved=[_milestone(m) for m in get_streak_milestones(streak)],
        next_milestone=_milestone(get_next_milestone(streak)),
    )
