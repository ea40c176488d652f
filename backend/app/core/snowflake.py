"""
Snowflake 主键生成

订阅、支付流水、通知等表的主键都由应用侧生成，插入前就能拿到 id，
创建支付链接时可以直接把订阅 id 写进 notes / reference_id。

位布局：41 位毫秒时间戳 | 10 位节点 | 12 位序列号
"""
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

from app.core.config import settings

# 2025-01-01T00:00:00Z
_EPOCH_MS = 1735689600000
_NODE_BITS = 10
_SEQ_BITS = 12
_MAX_NODE = (1 << _NODE_BITS) - 1
_SEQ_MASK = (1 << _SEQ_BITS) - 1
_MAX_BACKWARD_MS = 5000


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class Snowflake:
    def __init__(self, *, node_id: int) -> None:
        if not 0 <= node_id <= _MAX_NODE:
            raise ValueError(f"SNOWFLAKE_NODE_ID must be in [0, {_MAX_NODE}]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    def next_id(self) -> int:
        """
        生成下一个 id（线程安全）

        时钟回拨不超过 5 秒时等待追上，超过则拒绝生成。
        """
        with self._lock:
            ts = _now_ms()
            if ts < self._last_ts:
                drift = self._last_ts - ts
                if drift > _MAX_BACKWARD_MS:
                    raise RuntimeError(f"Clock moved backwards by {drift}ms, refusing to generate id")
                ts = _wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & _SEQ_MASK
                if self._seq == 0:
                    ts = _wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << (_NODE_BITS + _SEQ_BITS)) | (self._node_id << _SEQ_BITS) | self._seq


def _wait_until(target_ms: int) -> int:
    ts = _now_ms()
    while ts < target_ms:
        time.sleep(0.001)
        ts = _now_ms()
    return ts


def id_created_at(value: int) -> datetime:
    """从 id 中还原生成时间（UTC），排查日志时使用"""
    ms = (value >> (_NODE_BITS + _SEQ_BITS)) + _EPOCH_MS
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


_generator: Snowflake | None = None
_generator_lock = threading.Lock()


def generate_id() -> int:
    global _generator
    if _generator is None:
        with _generator_lock:
            if _generator is None:
                _generator = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _generator.next_id()
