from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError

from app.enums import StreakStatus
from app.models import AnalysisRecord, UserStreak
from app.services.streak import (
    StreakData,
    StreakService,
    StreakSnapshot,
    advance_streak,
    get_next_milestone,
    get_streak_milestones,
    get_streak_motivation,
    streak_status,
    to_streak_data,
)
from conftest import FakeCache

TODAY = date(2026, 3, 10)


class _BrokenSession:
    """数据库不可用时的会话"""

    def __init__(self) -> None:
        self.rollbacks = 0

    def get(self, *args, **kwargs):
        raise OperationalError("SELECT user_streaks", {}, Exception("connection refused"))

    def exec(self, *args, **kwargs):
        raise OperationalError("SELECT analysis_records", {}, Exception("connection refused"))

    def rollback(self) -> None:
        self.rollbacks += 1


def test_first_analysis_starts_streak():
    result = advance_streak(StreakSnapshot(), TODAY)
    assert result.snapshot.current_streak == 1
    assert result.snapshot.longest_streak == 1
    assert result.snapshot.last_analysis_date == TODAY
    assert result.is_new_record is True
    assert result.milestone_achieved is None


def test_consecutive_day_extends_streak():
    snapshot = StreakSnapshot(current_streak=5, longest_streak=5, last_analysis_date=TODAY - timedelta(days=1))
    result = advance_streak(snapshot, TODAY)
    assert result.snapshot.current_streak == 6
    assert result.is_new_record is True

    snapshot = StreakSnapshot(current_streak=5, longest_streak=10, last_analysis_date=TODAY - timedelta(days=1))
    result = advance_streak(snapshot, TODAY)
    assert result.snapshot.current_streak == 6
    assert result.snapshot.longest_streak == 10
    assert result.is_new_record is False


def test_same_day_is_unchanged_and_gap_resets():
    snapshot = StreakSnapshot(current_streak=4, longest_streak=9, last_analysis_date=TODAY)
    assert advance_streak(snapshot, TODAY).snapshot == snapshot

    snapshot = StreakSnapshot(current_streak=4, longest_streak=9, last_analysis_date=TODAY - timedelta(days=3))
    result = advance_streak(snapshot, TODAY)
    assert result.snapshot.current_streak == 1
    assert result.snapshot.longest_streak == 9
    assert result.is_new_record is False


def test_milestone_reached_on_exact_threshold():
    snapshot = StreakSnapshot(current_streak=6, longest_streak=6, last_analysis_date=TODAY - timedelta(days=1))
    milestone = advance_streak(snapshot, TODAY).milestone_achieved
    assert milestone is not None
    assert milestone.days == 7
    assert milestone.title == "Dedicated Analyzer"


def test_milestone_lookups():
    assert get_next_milestone(10).days == 14
    assert get_next_milestone(0).days == 7
    assert get_next_milestone(100) is None
    assert [m.days for m in get_streak_milestones(35)] == [7, 14, 30]
    assert get_streak_milestones(3) == []


def test_status_and_motivation():
    assert streak_status(None, TODAY) == StreakStatus.new
    assert streak_status(TODAY, TODAY) == StreakStatus.active_today
    assert streak_status(TODAY - timedelta(days=1), TODAY) == StreakStatus.ready
    assert streak_status(TODAY - timedelta(days=2), TODAY) == StreakStatus.broken

    broken = to_streak_data(
        StreakSnapshot(current_streak=8, longest_streak=8, last_analysis_date=TODAY - timedelta(days=4)), TODAY
    )
    assert broken.current_streak == 0
    assert broken.longest_streak == 8
    assert broken.days_since_last == 4
    assert get_streak_motivation(broken) == "Start your streak!"

    data = StreakData(
        current_streak=12,
        longest_streak=12,
        last_analysis_date=TODAY,
        streak_freeze_count=0,
        days_since_last=0,
        streak_status=StreakStatus.active_today,
    )
    assert get_streak_motivation(data) == "Great job today!"


def test_snapshot_cache_round_trip_tolerates_garbage():
    snapshot = StreakSnapshot(current_streak=3, longest_streak=5, last_analysis_date=TODAY)
    assert StreakSnapshot.from_cache(snapshot.to_cache()) == snapshot
    assert StreakSnapshot.from_cache(None) == StreakSnapshot()
    assert StreakSnapshot.from_cache({"last_analysis_date": "not-a-date"}).last_analysis_date is None


def test_service_rebuilds_from_history_and_caches(db, user):
    for days_ago in (2, 1, 1, 0):
        db.add(
            AnalysisRecord(
                user_id=user.id,
                created_at=datetime.combine(TODAY - timedelta(days=days_ago), datetime.min.time(), timezone.utc)
                + timedelta(hours=9),
            )
        )
    db.commit()

    cache = FakeCache()
    data = StreakService(db, cache).get_streak_data(user.id, today=TODAY)
    assert data.current_streak == 3
    assert data.longest_streak == 3
    assert data.streak_status == StreakStatus.active_today

    row = db.get(UserStreak, user.id)
    assert row is not None and row.current_streak == 3
    assert cache.data[StreakService.cache_key(user.id)]["current_streak"] == 3


def test_service_update_persists_and_is_same_day_idempotent(db, user):
    cache = FakeCache()
    service = StreakService(db, cache)
    db.add(UserStreak(user_id=user.id, current_streak=5, longest_streak=5, last_analysis_date=TODAY - timedelta(days=1)))
    db.commit()

    result = service.update_streak(user.id, today=TODAY)
    assert result.snapshot.current_streak == 6
    assert result.is_new_record is True

    again = service.update_streak(user.id, today=TODAY)
    assert again.snapshot.current_streak == 6
    assert again.is_new_record is False

    db.expire_all()
    assert db.get(UserStreak, user.id).current_streak == 6


def test_service_falls_back_to_cache_when_store_fails():
    cache = FakeCache()
    key = StreakService.cache_key(42)
    cache.data[key] = StreakSnapshot(
        current_streak=2, longest_streak=4, last_analysis_date=TODAY - timedelta(days=1)
    ).to_cache()
    broken = _BrokenSession()
    service = StreakService(broken, cache)  # type: ignore[arg-type]

    data = service.get_streak_data(42, today=TODAY)
    assert data.current_streak == 2
    assert data.streak_status == StreakStatus.ready

    result = service.update_streak(42, today=TODAY)
    assert result.snapshot.current_streak == 3
    assert cache.data[key]["current_streak"] == 3
    assert cache.data[key]["last_analysis_date"] == TODAY.isoformat()
    assert broken.rollbacks == 2


def test_service_reset_keeps_longest(db, user):
    cache = FakeCache()
    db.add(UserStreak(user_id=user.id, current_streak=9, longest_streak=15, last_analysis_date=TODAY))
    db.commit()
    cache.data[StreakService.cache_key(user.id)] = {"current_streak": 9}

    StreakService(db, cache).reset_streak(user.id)

    db.expire_all()
    row = db.get(UserStreak, user.id)
    assert row.current_streak == 0
    assert row.longest_streak == 15
    assert row.last_analysis_date is None
    assert StreakService.cache_key(user.id) not in cache.data


def test_streak_endpoints(client, cache, user, headers):
    r = client.get("/api/v1/streak", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["current_streak"] == 0
    assert body["streak_status"] == "new"
    assert body["next_milestone"]["days"] == 7

    r = client.post("/api/v1/streak/update", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["current_streak"] == 1
    assert body["is_new_record"] is True
    assert body["milestone_achieved"] is None
    assert cache.data[StreakService.cache_key(user.id)]["current_streak"] == 1

    r = client.get("/api/v1/streak", headers=headers)
    assert r.json()["streak_status"] == "active_today"
    assert r.json()["motivation"] == "Great job today!"

    r = client.post("/api/v1/streak/reset", headers=headers)
    assert r.status_code == 200
    assert client.get("/api/v1/streak", headers=headers).json()["current_streak"] == 0


def test_milestones_endpoint(client):
    r = client.get("/api/v1/streak/milestones", params={"streak": 35})
    assert r.status_code == 200
    body = r.json()
    assert [m["days"] for m in body["achieved"]] == [7, 14, 30]
    assert body["next_milestone"]["title"] == "Fitness Champion"

    r = client.get("/api/v1/streak/milestones", params={"streak": 150})
    assert r.json()["next_milestone"] is None
