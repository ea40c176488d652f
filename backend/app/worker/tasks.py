"""
定时任务逻辑
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlmodel import Session

from app.core.db import engine
from app.core.redis_client import get_redis_client
from app.services.notifications import MaintenanceResult, check_expiring_subscriptions

logger = logging.getLogger(__name__)

RECONCILE_LOCK_KEY = "subscriptions:maintenance:lock"
RECONCILE_LOCK_TTL_SECONDS = 60 * 30


def reconcile_subscriptions(now: datetime | None = None) -> MaintenanceResult | None:
    """
    订阅维护任务（每小时）

    - 宽限期已结束的取消订阅置为 expired
    - 即将到期的订阅发送提醒

    多实例部署时通过 Redis 锁保证同一时间只有一个实例执行。
    未获取到锁时返回 None。
    """
    now = now or datetime.now(timezone.utc)

    redis_client = get_redis_client()
    lock_value = str(uuid4())
    acquired = redis_client.acquire_lock(
        RECONCILE_LOCK_KEY,
        lock_value,
        expire_seconds=RECONCILE_LOCK_TTL_SECONDS,
    )
    if not acquired:
        logger.info("Subscription maintenance already running, skip this run.")
        return None

    try:
        with Session(engine) as session:
            result = check_expiring_subscriptions(session, now=now)
        logger.info(
            "Subscription maintenance finished: expired=%d reminders=%d",
            result.expired,
            result.reminders,
        )
        return result
    finally:
        redis_client.release_lock(RECONCILE_LOCK_KEY, lock_value)
