"""
Redis 客户端

两处用途：
- 连续打卡的“最后一次已知正确值”缓存（JSON）
- 订阅维护任务的互斥锁

Redis 只是辅助存储：连接或命令失败时记录日志并返回空值/False，不向上抛异常，
调用方据此退化处理。
"""

import json
import logging
from typing import Any

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)

# 锁值匹配时才删除，避免误删其他实例续上的锁
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisClient:
    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
    ):
        self.client = redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
        logger.info("Redis client configured for %s:%s/%s", host, port, db)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error("Redis ping failed: %s", e)
            return False

    def get_json(self, key: str) -> Any | None:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.error("Redis get %s failed: %s", key, e)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable cache entry %s", key)
            return None

    def set_json(self, key: str, value: Any, ex: int | None = None) -> bool:
        """写入 JSON 缓存，ex 为过期秒数"""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("Value for %s is not JSON serializable: %s", key, e)
            return False
        try:
            return bool(self.client.set(key, payload, ex=ex))
        except redis.RedisError as e:
            logger.error("Redis set %s failed: %s", key, e)
            return False

    def delete(self, *keys: str) -> int:
        try:
            return int(self.client.delete(*keys))
        except redis.RedisError as e:
            logger.error("Redis delete failed: %s", e)
            return 0

    def acquire_lock(self, lock_key: str, lock_value: str, expire_seconds: int = 60) -> bool:
        """
        获取分布式锁（SET NX EX）

        lock_value 由调用方生成（uuid），释放时校验，只释放自己持有的锁。
        Redis 不可用时视为未获取到锁。
        """
        try:
            return bool(self.client.set(lock_key, lock_value, ex=expire_seconds, nx=True))
        except redis.RedisError as e:
            logger.error("Failed to acquire lock %s: %s", lock_key, e)
            return False

    def release_lock(self, lock_key: str, lock_value: str) -> bool:
        try:
            return self.client.eval(_RELEASE_LOCK_SCRIPT, 1, lock_key, lock_value) == 1
        except redis.RedisError as e:
            logger.error("Failed to release lock %s: %s", lock_key, e)
            return False


_redis_client: RedisClient | None = None


def get_redis_client() -> RedisClient:
    """进程内共享的 RedisClient，首次调用时按配置创建"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
        )
    return _redis_client
