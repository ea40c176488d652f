from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.core import snowflake
from app.core.config import settings
from app.core.redis_client import RedisClient
from app.services import config_service
from app.worker.scheduler import build_scheduler


def test_health_check(client):
    r = client.get("/api/v1/utils/health-check/")
    assert r.status_code == 200
    assert r.json() is True


def test_unknown_route_uses_error_envelope(client):
    r = client.get("/api/v1/does-not-exist")
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "Not Found", "code": "NOT_FOUND"}


def test_invalid_tokens_are_rejected(client, user):
    def _get(token: str):
        return client.get("/api/v1/subscription/details", headers={"Authorization": f"Bearer {token}"})

    r = _get("not-a-jwt")
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"

    exp = int(time.time()) + 60
    assert _get(jwt.encode({"sub": "abc", "exp": exp}, settings.SECRET_KEY, algorithm="HS256")).status_code == 401
    assert _get(jwt.encode({"exp": exp}, settings.SECRET_KEY, algorithm="HS256")).status_code == 401
    assert _get(jwt.encode({"sub": str(user.id), "exp": exp}, "wrong-secret", algorithm="HS256")).status_code == 401

    r = _get(jwt.encode({"sub": "999999999", "exp": exp}, settings.SECRET_KEY, algorithm="HS256"))
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "User not found", "code": "NOT_FOUND"}

    expired = jwt.encode({"sub": str(user.id), "exp": int(time.time()) - 10}, settings.SECRET_KEY, algorithm="HS256")
    assert _get(expired).status_code == 401


def test_snowflake_ids_are_unique_and_ordered():
    generator = snowflake.Snowflake(node_id=7)
    ids = [generator.next_id() for _ in range(5000)]
    assert len(set(ids)) == len(ids)
    assert ids == sorted(ids)

    created = snowflake.id_created_at(ids[-1])
    assert abs(created - datetime.now(timezone.utc)) < timedelta(seconds=5)


def test_snowflake_rejects_bad_node():
    with pytest.raises(ValueError, match="SNOWFLAKE_NODE_ID"):
        snowflake.Snowflake(node_id=1024)


def test_default_plan_catalog():
    plans = {p["plan_name"]: p for p in config_service.get_default_plans()}
    assert set(plans) == {"Basic", "Pro", "VIP"}
    assert plans["Basic"]["monthly_analyses_limit"] == 5
    assert plans["Basic"]["plan_price_usd"] == "4.00"


def test_scheduler_registers_maintenance_job():
    scheduler = build_scheduler()
    job = scheduler.get_job("subscription_maintenance")
    assert job is not None
    assert job.func.__name__ == "reconcile_subscriptions"


def test_redis_client_degrades_when_unreachable():
    cache = RedisClient(host="127.0.0.1", port=1)
    assert cache.get_json("streak:1") is None
    assert cache.set_json("streak:1", {"current_streak": 1}) is False
    assert cache.acquire_lock("lock", "v") is False
    assert cache.release_lock("lock", "v") is False
