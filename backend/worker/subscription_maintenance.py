"""
订阅维护一次性脚本

供 cron / Kubernetes CronJob 调用，与调度器中的每小时任务逻辑相同：
    python -m worker.subscription_maintenance
"""
from __future__ import annotations

import logging

from app.worker.tasks import reconcile_subscriptions

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("subscription_maintenance")


def main() -> None:
    result = reconcile_subscriptions()
    if result is None:
        logger.info("Another instance holds the maintenance lock, nothing to do")
        return
    logger.info("Done: expired=%d reminders=%d", result.expired, result.reminders)


if __name__ == "__main__":
    main()
