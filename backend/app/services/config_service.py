"""
默认配置加载

从 app/config/default_config.json 读取套餐目录等种子数据，进程内缓存。
"""
from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import Any

_lock = Lock()
_config: dict[str, Any] | None = None

CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "default_config.json"


def get_config() -> dict[str, Any]:
    global _config
    with _lock:
        if _config is None:
            _config = _load_from_file()
        return _config


def refresh_config() -> dict[str, Any]:
    global _config
    with _lock:
        _config = _load_from_file()
        return _config


def _load_from_file() -> dict[str, Any]:
    if not CONFIG_PATH.exists():
        return {"plans": []}
    return json.loads(CONFIG_PATH.read_text(encoding="utf-8"))


def get_default_plans() -> list[dict[str, Any]]:
    plans = get_config().get("plans")
    return plans if isinstance(plans, list) else []
