"""
用量计数器

每种事件维护一份时间戳日志和一个累计总数：
- 记录时追加当前时间，并清理超过保留期（30天）的时间戳
- 累计总数只增不减，不受清理影响
- 最近24小时等滚动统计按需从时间戳日志中过滤
"""

import time
from typing import Callable, List, Optional

from loguru import logger

from constants import ROLLING_WINDOW_SECONDS, USAGE_RETENTION_SECONDS

API_CALL = "api_call"
ARTIFACT = "artifact"


class UsageCounter:
    """单一类型事件的计数器"""

    def __init__(self, kind: str, db=None, clock: Callable[[], float] = time.time,
                 retention_seconds: int = USAGE_RETENTION_SECONDS):
        """
        Args:
            kind: 事件类型，例如 api_call / artifact
            db: DatabaseManager，可选；提供时写穿到数据库
            clock: 时间来源，测试中可替换
            retention_seconds: 时间戳保留期
        """
        self.kind = kind
        self.db = db
        self.clock = clock
        self.retention_seconds = retention_seconds
        self.total = 0
        self.timestamps: List[float] = []
        self._load()

    @property
    def total_key(self) -> str:
        return f"total_{self.kind}"

    def _load(self):
        if self.db is None:
            return
        total = self.db.load_config(self.total_key, 0)
        try:
            self.total = max(0, int(total))
        except (TypeError, ValueError):
            logger.warning(f"计数器 {self.kind} 的累计值无效: {total!r}，重置为0")
            self.total = 0
        self.timestamps = sorted(self.db.get_usage_events(self.kind))

    def record(self) -> float:
        """记录一次事件，返回记录的时间戳"""
        now = self.clock()
        self.timestamps.append(now)
        cutoff = now - self.retention_seconds
        self.timestamps = [t for t in self.timestamps if t > cutoff]
        self.total += 1

        if self.db is not None:
            self.db.add_usage_event(self.kind, now)
            self.db.prune_usage_events(self.kind, cutoff)
            self.db.save_config(self.total_key, self.total, 'integer')
        return now

    def count_since(self, window_seconds: float, now: Optional[float] = None) -> int:
        """统计窗口内的事件数"""
        now = self.clock() if now is None else now
        since = now - window_seconds
        return sum(1 for t in self.timestamps if t > since)

    def rolling_24h(self) -> int:
        return self.count_since(ROLLING_WINDOW_SECONDS)
