"""
任务台账

按创建时间倒序保存全部生成任务，提供按任务ID的增删改操作，并持有
API调用次数与视频产出次数两个用量计数器。计数器与任务生命周期无关，
删除任务不会影响计数。
"""

import re
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from constants import ESTIMATED_MB_PER_5_SECONDS
from models.task_model import (
    ALLOWED_TRANSITIONS,
    IMMUTABLE_FIELDS,
    GenerationTask,
    InvalidTransitionError,
    TaskStatus,
)
from usage_counter import API_CALL, ARTIFACT, UsageCounter
from utils.file_utils import format_file_size

SEQUENCE_KEY = 'last_sequence_number'
RESTART_MESSAGE = "Interrupted: application restarted before generation finished"


def _duration_seconds(duration: str) -> int:
    match = re.match(r"\s*(\d+)", duration or "")
    return int(match.group(1)) if match else 5


class TaskLedger:
    """任务台账"""

    def __init__(self, db=None, clock: Callable[[], float] = time.time):
        """
        Args:
            db: DatabaseManager，可选；提供时所有修改写穿到数据库
            clock: 时间来源
        """
        self.db = db
        self.clock = clock
        self._lock = threading.RLock()
        self._tasks: List[GenerationTask] = []
        self._last_sequence = 0
        self.api_calls = UsageCounter(API_CALL, db=db, clock=clock)
        self.artifacts = UsageCounter(ARTIFACT, db=db, clock=clock)
        self._load()

    def _load(self):
        if self.db is None:
            return

        for row in self.db.get_tasks():
            try:
                task = GenerationTask.from_dict(row)
            except (ValueError, TypeError) as e:
                logger.warning(f"跳过格式错误的任务记录 {row.get('id')}: {e}")
                continue
            if task.status is TaskStatus.PROCESSING:
                # 进程重启后无法续接原来的流
                task.status = TaskStatus.FAILED
                task.progress_message = RESTART_MESSAGE
                self.db.update_task(task.id, {'status': task.status.value, 'progress_message': RESTART_MESSAGE})
            self._tasks.append(task)

        stored_sequence = self.db.load_config(SEQUENCE_KEY, 0)
        if not isinstance(stored_sequence, int):
            stored_sequence = 0
        self._last_sequence = max([stored_sequence] + [t.sequence_number for t in self._tasks])
        logger.info(f"已加载 {len(self._tasks)} 个任务")

    def _find(self, task_id: str) -> Optional[GenerationTask]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    @property
    def tasks(self) -> List[GenerationTask]:
        """任务快照，新任务在前"""
        with self._lock:
            return [replace(t) for t in self._tasks]

    def get(self, task_id: str) -> Optional[GenerationTask]:
        with self._lock:
            task = self._find(task_id)
            return replace(task) if task is not None else None

    def __contains__(self, task_id: str) -> bool:
        with self._lock:
            return self._find(task_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def submit(self, task: GenerationTask) -> GenerationTask:
        """
        校验并加入新任务

        Args:
            task: 新任务

        Returns:
            GenerationTask: 加入台账后的任务快照

        Raises:
            TaskValidationError: 缺少当前模式必需的输入
            ValueError: 任务ID重复
        """
        task.validate()
        with self._lock:
            if self._find(task.id) is not None:
                raise ValueError(f"任务ID重复: {task.id}")
            self._last_sequence += 1
            stored = replace(
                task,
                sequence_number=self._last_sequence,
                status=TaskStatus.PENDING,
                progress=0,
                progress_message=None,
                artifact_url=None,
                thumbnail=None,
                attempt=0,
                updated_at=self.clock(),
            )
            self._tasks.insert(0, stored)
            if self.db is not None:
                self.db.add_task(stored.to_dict())
                self.db.save_config(SEQUENCE_KEY, self._last_sequence, 'integer')
            logger.info(f"新增任务 #{stored.sequence_number} {stored.id} mode={stored.mode.value}")
            return replace(stored)

    def update_task(self, task_id: str, **changes: Any) -> Optional[GenerationTask]:
        """
        按ID更新任务

        任务不存在时不做任何事并返回 None（例如任务已被删除而流还在跑）。

        Raises:
            ValueError: 试图修改不可变字段或未知字段
            InvalidTransitionError: 非法状态迁移
        """
        for key in changes:
            if key in IMMUTABLE_FIELDS:
                raise ValueError(f"字段 {key} 创建后不可修改")
            if key not in GenerationTask.__dataclass_fields__:
                raise ValueError(f"未知字段: {key}")

        with self._lock:
            task = self._find(task_id)
            if task is None:
                logger.debug(f"任务不存在，忽略更新: {task_id}")
                return None

            if 'status' in changes:
                target = TaskStatus(changes['status'])
                changes['status'] = target
                if target is not task.status and target not in ALLOWED_TRANSITIONS[task.status]:
                    raise InvalidTransitionError(task_id, task.status, target)
                if target is TaskStatus.COMPLETED and not (changes.get('artifact_url') or task.artifact_url):
                    raise ValueError(f"任务 {task_id} 没有视频地址，不能标记为完成")

            if changes.get('artifact_url') and changes.get('status', task.status) is not TaskStatus.COMPLETED:
                raise ValueError(f"任务 {task_id} 只有在完成时才能设置视频地址")

            changes['updated_at'] = self.clock()
            for key, value in changes.items():
                setattr(task, key, value)

            if self.db is not None:
                row = {k: (v.value if isinstance(v, TaskStatus) else v) for k, v in changes.items()}
                self.db.update_task(task_id, row)
            return replace(task)

    def delete(self, task_id: str) -> bool:
        """删除任务，计数器不受影响"""
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return False
            self._tasks.remove(task)
            if self.db is not None:
                self.db.delete_task(task_id)
            logger.info(f"删除任务 #{task.sequence_number} {task_id}")
            return True

    def begin_attempt(self, task_id: str) -> Optional[int]:
        """
        开始新一轮生成：pending 或终态任务进入 processing

        已有的视频地址保留，直到新一轮成功后被替换。

        Returns:
            新的 attempt 序号；任务不存在时返回 None

        Raises:
            InvalidTransitionError: 任务正在生成中
        """
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            if task.status is TaskStatus.PROCESSING:
                raise InvalidTransitionError(task_id, task.status, TaskStatus.PROCESSING)
            task.status = TaskStatus.PROCESSING
            task.attempt += 1
            task.progress = 0
            task.progress_message = "Starting generation..."
            task.updated_at = self.clock()
            if self.db is not None:
                self.db.update_task(task_id, {
                    'status': task.status.value,
                    'attempt': task.attempt,
                    'progress': 0,
                    'progress_message': task.progress_message,
                    'updated_at': task.updated_at,
                })
            return task.attempt

    def _current_attempt(self, task_id: str, attempt: Optional[int]) -> Optional[GenerationTask]:
        task = self._find(task_id)
        if task is None:
            logger.debug(f"任务已删除，忽略回调: {task_id}")
            return None
        if attempt is not None and task.attempt != attempt:
            logger.debug(f"忽略过期的回调 task={task_id} attempt={attempt} current={task.attempt}")
            return None
        if task.status is not TaskStatus.PROCESSING:
            logger.debug(f"任务不在生成中，忽略回调 task={task_id} status={task.status.value}")
            return None
        return task

    def apply_progress(self, task_id: str, percent: Optional[int], message: str,
                       attempt: Optional[int] = None) -> Optional[GenerationTask]:
        with self._lock:
            if self._current_attempt(task_id, attempt) is None:
                return None
            changes: Dict[str, Any] = {'progress_message': message}
            if percent is not None:
                changes['progress'] = max(0, min(100, int(percent)))
            return self.update_task(task_id, **changes)

    def mark_completed(self, task_id: str, artifact_url: str,
                       attempt: Optional[int] = None) -> Optional[GenerationTask]:
        with self._lock:
            if self._current_attempt(task_id, attempt) is None:
                return None
            return self.update_task(
                task_id,
                status=TaskStatus.COMPLETED,
                artifact_url=artifact_url,
                progress=100,
                progress_message="Generation completed!",
            )

    def mark_failed(self, task_id: str, message: str,
                    attempt: Optional[int] = None) -> Optional[GenerationTask]:
        with self._lock:
            if self._current_attempt(task_id, attempt) is None:
                return None
            return self.update_task(task_id, status=TaskStatus.FAILED, progress_message=f"Error: {message}")

    def set_thumbnail(self, task_id: str, thumbnail: str) -> Optional[GenerationTask]:
        return self.update_task(task_id, thumbnail=thumbnail)

    def record_api_call(self) -> None:
        with self._lock:
            self.api_calls.record()

    def record_artifact(self) -> None:
        with self._lock:
            self.artifacts.record()

    def get_statistics(self) -> Dict[str, Any]:
        """汇总任务状态与最近24小时用量"""
        with self._lock:
            stats: Dict[str, Any] = {status.value: 0 for status in TaskStatus}
            stats['total'] = len(self._tasks)
            storage_mb = 0
            for task in self._tasks:
                stats[task.status.value] += 1
                if task.status is TaskStatus.COMPLETED:
                    storage_mb += _duration_seconds(task.duration) / 5 * ESTIMATED_MB_PER_5_SECONDS

            stats['api_calls_total'] = self.api_calls.total
            stats['api_calls_24h'] = self.api_calls.rolling_24h()
            stats['artifacts_total'] = self.artifacts.total
            stats['artifacts_24h'] = self.artifacts.rolling_24h()
            stats['api_calls_display'] = f"{stats['api_calls_24h']}/{stats['api_calls_total']}"
            stats['artifacts_display'] = f"{stats['artifacts_24h']}/{stats['artifacts_total']}"
            stats['estimated_storage'] = format_file_size(int(storage_mb * 1024 * 1024))
            return stats
