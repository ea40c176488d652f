"""
连续打卡（streak）服务

规则（按自然日，UTC）：
- 从未分析过：连续天数 = 1
- 上次分析是今天：不变（同一天不重复计数）
- 上次分析是昨天：+1
- 间隔超过一天：重置为 1

数据分两层：
- 权威数据：数据库 user_streaks 表（缺失时由分析记录重建）
- 最后一次已知正确值：Redis 缓存，TTL 为 STREAK_CACHE_TTL_SECONDS

数据库读写失败时退回缓存快照，用同样的规则重新计算并写回缓存，
因此缓存中的值可能落后于数据库，但不会早于上一次成功写入的结果。
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from datetime import date
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from app.core.config import settings
from app.core.redis_client import RedisClient
from app.enums import StreakStatus
from app.models import AnalysisRecord, UserStreak, as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreakMilestone:
    days: int
    title: str
    description: str
    icon: str
    color: str


STREAK_MILESTONES: tuple[StreakMilestone, ...] = (
    StreakMilestone(7, "Dedicated Analyzer", "7 days strong!", "🔥", "#FF6B35"),
    StreakMilestone(14, "Consistent Tracker", "2 weeks of dedication!", "⚡", "#FF8E53"),
    StreakMilestone(30, "Muscle Expert", "30 days of progress!", "💪", "#FFB347"),
    StreakMilestone(60, "Fitness Champion", "2 months of commitment!", "🏆", "#FFD700"),
    StreakMilestone(100, "Streak Master", "100 days legendary!", "👑", "#FF4500"),
)


@dataclass(frozen=True)
class StreakSnapshot:
    """某一时刻的连续打卡快照（数据库行和缓存共用的结构）"""
    current_streak: int = 0
    longest_streak: int = 0
    last_analysis_date: date | None = None
    streak_freeze_count: int = 0

    def to_cache(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_analysis_date"] = self.last_analysis_date.isoformat() if self.last_analysis_date else None
        return data

    @classmethod
    def from_cache(cls, data: dict[str, Any] | None) -> StreakSnapshot:
        if not isinstance(data, dict):
            return cls()
        last = data.get("last_analysis_date")
        try:
            last_date = date.fromisoformat(last) if last else None
        except (TypeError, ValueError):
            last_date = None
        return cls(
            current_streak=int(data.get("current_streak") or 0),
            longest_streak=int(data.get("longest_streak") or 0),
            last_analysis_date=last_date,
            streak_freeze_count=int(data.get("streak_freeze_count") or 0),
        )


@dataclass(frozen=True)
class StreakUpdate:
    snapshot: StreakSnapshot
    is_new_record: bool
    milestone_achieved: StreakMilestone | None


@dataclass(frozen=True)
class StreakData:
    current_streak: int
    longest_streak: int
    last_analysis_date: date | None
    streak_freeze_count: int
    days_since_last: int
    streak_status: StreakStatus


def advance_streak(snapshot: StreakSnapshot, today: date) -> StreakUpdate:
    """
    完成一次分析后推进连续天数

    Args:
        snapshot: 当前快照
        today: 今天的日期

    Returns:
        StreakUpdate: 新快照、是否刷新最长纪录、本次达成的里程碑
    """
    last = snapshot.last_analysis_date
    if last is None:
        current = 1
    else:
        gap = (today - last).days
        if gap <= 0:
            current = snapshot.current_streak
        elif gap == 1:
            current = snapshot.current_streak + 1
        else:
            current = 1

    longest = max(snapshot.longest_streak, current)
    milestone = next((m for m in STREAK_MILESTONES if m.days == current), None)
    return StreakUpdate(
        snapshot=replace(
            snapshot,
            current_streak=current,
            longest_streak=longest,
            last_analysis_date=max(today, last) if last else today,
        ),
        is_new_record=longest > snapshot.longest_streak,
        milestone_achieved=milestone,
    )


def get_next_milestone(streak: int) -> StreakMilestone | None:
    return next((m for m in STREAK_MILESTONES if streak < m.days), None)


def get_streak_milestones(streak: int) -> list[StreakMilestone]:
    return [m for m in STREAK_MILESTONES if streak >= m.days]


def streak_status(last_analysis_date: date | None, today: date) -> StreakStatus:
    if last_analysis_date is None:
        return StreakStatus.new
    gap = (today - last_analysis_date).days
    if gap <= 0:
        return StreakStatus.active_today
    if gap == 1:
        return StreakStatus.ready
    return StreakStatus.broken


def to_streak_data(snapshot: StreakSnapshot, today: date) -> StreakData:
    """快照转为展示数据，断签时当前连续天数显示为 0"""
    status = streak_status(snapshot.last_analysis_date, today)
    days_since = (today - snapshot.last_analysis_date).days if snapshot.last_analysis_date else 0
    return StreakData(
        current_streak=0 if status == StreakStatus.broken else snapshot.current_streak,
        longest_streak=snapshot.longest_streak,
        last_analysis_date=snapshot.last_analysis_date,
        streak_freeze_count=snapshot.streak_freeze_count,
        days_since_last=max(days_since, 0),
        streak_status=status,
    )


def get_streak_motivation(data: StreakData) -> str:
    if data.streak_status == StreakStatus.broken or data.current_streak == 0:
        return "Start your streak!"
    if data.streak_status == StreakStatus.active_today:
        return "Great job today!"
    if data.streak_status == StreakStatus.ready:
        return "Keep it going!"
    if data.current_streak >= 100:
        return "Legendary streak!"
    if data.current_streak >= 30:
        return "Amazing dedication!"
    if data.current_streak >= 7:
        return "Keep it up!"
    return "Building momentum!"


def _today() -> date:
    return utc_now().date()


class StreakService:
    """
    连续打卡服务

    session 和 cache 由调用方注入（路由中通过 Depends 提供），便于测试替换。
    """

    def __init__(self, session: Session, cache: RedisClient) -> None:
        self.session = session
        self.cache = cache

    @staticmethod
    def cache_key(user_id: int) -> str:
        return f"streak:{user_id}"

    # ------------------------------------------------------------------
    # 缓存
    # ------------------------------------------------------------------

    def _read_cache(self, user_id: int) -> StreakSnapshot:
        return StreakSnapshot.from_cache(self.cache.get_json(self.cache_key(user_id)))

    def _write_cache(self, user_id: int, snapshot: StreakSnapshot) -> None:
        if not self.cache.set_json(
            self.cache_key(user_id), snapshot.to_cache(), ex=settings.STREAK_CACHE_TTL_SECONDS
        ):
            logger.warning("Failed to cache streak for user %s", user_id)

    # ------------------------------------------------------------------
    # 数据库
    # ------------------------------------------------------------------

    def _rebuild_from_history(self, user_id: int) -> StreakSnapshot:
        created = self.session.exec(
            select(AnalysisRecord.created_at)
            .where(AnalysisRecord.user_id == user_id)
            .order_by(col(AnalysisRecord.created_at))
        ).all()
        snapshot = StreakSnapshot()
        for day in sorted({as_utc(ts).date() for ts in created}):  # type: ignore[union-attr]
            snapshot = advance_streak(snapshot, day).snapshot
        return snapshot

    def _load_row(self, user_id: int) -> UserStreak:
        row = self.session.get(UserStreak, user_id)
        if row is not None:
            return row
        snapshot = self._rebuild_from_history(user_id)
        row = UserStreak(
            user_id=user_id,
            current_streak=snapshot.current_streak,
            longest_streak=snapshot.longest_streak,
            last_analysis_date=snapshot.last_analysis_date,
        )
        self.session.add(row)
        return row

    @staticmethod
    def _snapshot(row: UserStreak) -> StreakSnapshot:
        return StreakSnapshot(
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            last_analysis_date=row.last_analysis_date,
            streak_freeze_count=row.streak_freeze_count,
        )

    # ------------------------------------------------------------------
    # 对外接口
    # ------------------------------------------------------------------

    def get_streak_data(self, user_id: int, today: date | None = None) -> StreakData:
        today = today or _today()
        try:
            row = self._load_row(user_id)
            self.session.commit()
            snapshot = self._snapshot(row)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Streak store unavailable for user %s, using cached snapshot", user_id)
            return to_streak_data(self._read_cache(user_id), today)

        self._write_cache(user_id, snapshot)
        return to_streak_data(snapshot, today)

    def update_streak(self, user_id: int, today: date | None = None) -> StreakUpdate:
        today = today or _today()
        try:
            row = self._load_row(user_id)
            result = advance_streak(self._snapshot(row), today)
            row.current_streak = result.snapshot.current_streak
            row.longest_streak = result.snapshot.longest_streak
            row.last_analysis_date = result.snapshot.last_analysis_date
            row.updated_at = utc_now()
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Streak store unavailable for user %s, updating cached snapshot", user_id)
            result = advance_streak(self._read_cache(user_id), today)

        self._write_cache(user_id, result.snapshot)
        if result.milestone_achieved:
            logger.info("User %s reached streak milestone %s", user_id, result.milestone_achieved.title)
        return result

    def reset_streak(self, user_id: int) -> None:
        """当前连续天数清零（保留最长纪录），并清除缓存"""
        row = self._load_row(user_id)
        row.current_streak = 0
        row.last_analysis_date = None
        row.updated_at = utc_now()
        self.session.add(row)
        self.session.commit()
        self.cache.delete(self.cache_key(user_id))
