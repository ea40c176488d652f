"""
服务启动前检查脚本

部署时（迁移之前）执行：
1. 等待数据库可连接（tenacity 重试，最长约 5 分钟）
2. 检查 Redis 是否可用；Redis 只承载缓存和任务锁，不可用时只告警不阻塞启动
"""
import logging

from sqlalchemy import Engine
from sqlmodel import Session, select
from tenacity import after_log, before_log, retry, stop_after_attempt, wait_fixed

from app.core.db import engine
from app.core.redis_client import get_redis_client

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def wait_for_db(db_engine: Engine) -> None:
    """执行 select(1)，失败时抛出异常交给 tenacity 重试"""
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except Exception as e:
        logger.error(e)
        raise e


def check_redis() -> bool:
    ok = get_redis_client().ping()
    if not ok:
        logger.warning("Redis is unavailable: streak cache and job locks are degraded")
    return ok


def main() -> None:
    logger.info("Waiting for database")
    wait_for_db(engine)
    check_redis()
    logger.info("Service dependencies ready")


if __name__ == "__main__":  # pragma: no cover
    main()
