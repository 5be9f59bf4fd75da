"""
配置数据模型
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from loguru import logger

from constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_MAX_WORKERS,
    DEFAULT_RESTRICTION_PATTERNS,
    VIDEO_GENERATION_TIMEOUT,
)


@dataclass
class AppSettings:
    """应用配置"""
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: str = ""
    request_timeout: int = VIDEO_GENERATION_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    restriction_patterns: Tuple[str, ...] = field(default=DEFAULT_RESTRICTION_PATTERNS)


def _parse_int(name: str, raw, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"配置项 {name} 不是有效整数: {raw!r}，使用默认值 {default}")
        return default
    if value < 1:
        logger.warning(f"配置项 {name} 必须大于0: {value}，使用默认值 {default}")
        return default
    return value


def _parse_patterns(raw) -> Tuple[str, ...]:
    if isinstance(raw, (list, tuple)):
        items = raw
    else:
        items = str(raw).split(',')
    return tuple(p.strip().lower() for p in items if str(p).strip())


def load_settings(db=None) -> AppSettings:
    """
    加载应用配置

    优先级：环境变量 > 数据库 config 表 > constants 默认值

    Args:
        db: DatabaseManager 实例，可选

    Returns:
        AppSettings
    """
    stored = {}
    if db is not None:
        for key in ('api_base_url', 'api_key', 'request_timeout', 'max_workers', 'restriction_patterns'):
            value = db.load_config(key)
            if value not in (None, ''):
                stored[key] = value

    def pick(key: str, env_name: str) -> Optional[object]:
        env_value = os.environ.get(env_name)
        if env_value:
            return env_value
        return stored.get(key)

    settings = AppSettings()

    base_url = pick('api_base_url', 'SORA_API_BASE_URL')
    if base_url:
        settings.api_base_url = str(base_url).strip().rstrip('/')

    api_key = pick('api_key', 'SORA_API_KEY')
    if api_key:
        settings.api_key = str(api_key).strip()

    timeout = pick('request_timeout', 'SORA_REQUEST_TIMEOUT')
    if timeout is not None:
        settings.request_timeout = _parse_int('request_timeout', timeout, VIDEO_GENERATION_TIMEOUT)

    workers = pick('max_workers', 'SORA_MAX_WORKERS')
    if workers is not None:
        settings.max_workers = _parse_int('max_workers', workers, DEFAULT_MAX_WORKERS)

    patterns = pick('restriction_patterns', 'SORA_RESTRICTION_PATTERNS')
    if patterns:
        parsed = _parse_patterns(patterns)
        if parsed:
            settings.restriction_patterns = parsed

    if not settings.api_key:
        logger.warning("未配置API密钥，请设置 SORA_API_KEY 或在配置中保存 api_key")

    return settings
