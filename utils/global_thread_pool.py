from typing import List, Tuple

from PyQt5.QtCore import QThread
from loguru import logger

from constants import DEFAULT_MAX_WORKERS


class GlobalThreadPool:
    """
    限制同时运行的工作线程数，超出的按提交顺序排队

    每个线程带一个 key（通常是任务ID），用于查询某个任务是否已在运行或排队。
    同一个 key 可以同时有多个线程（例如重新生成时上一轮线程还没退出），
    并发数按线程计算。
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS):
        self.max_workers = max(1, int(max_workers))
        self._active: List[Tuple[str, QThread]] = []
        self._queue: List[Tuple[str, QThread]] = []
        # 已结束但底层线程可能还没完全退出的 QThread，保留引用直到 isFinished
        self._retired: List[QThread] = []

    def set_max_workers(self, n: int):
        self.max_workers = max(1, int(n))
        self._drain()

    def submit(self, key: str, thread: QThread):
        thread.finished.connect(lambda: self._on_thread_finished(key, thread))
        self._queue.append((key, thread))
        self._drain()

    def _drain(self):
        while self._queue and len(self._active) < self.max_workers:
            key, thread = self._queue.pop(0)
            self._active.append((key, thread))
            logger.debug(f"启动工作线程 key={key} active={len(self._active)}")
            thread.start()

    def _on_thread_finished(self, key: str, thread: QThread):
        self._active = [(k, t) for k, t in self._active if t is not thread]
        self._retired = [t for t in self._retired if not t.isFinished()]
        self._retired.append(thread)
        self._drain()

    def contains(self, key: str) -> bool:
        return any(k == key for k, _ in self._active) or any(k == key for k, _ in self._queue)

    def active_count(self) -> int:
        return len(self._active)

    def queued_count(self) -> int:
        return len(self._queue)

    def wait_all(self, msecs: int = -1) -> bool:
        """等待正在运行的线程结束，排队中的线程需要事件循环继续调度"""
        done = True
        for _, thread in list(self._active):
            if msecs < 0:
                done = thread.wait() and done
            else:
                done = thread.wait(msecs) and done
        return done
