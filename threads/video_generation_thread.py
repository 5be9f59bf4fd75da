"""
视频生成工作线程
"""

from dataclasses import replace

from PyQt5.QtCore import QThread, pyqtSignal
from loguru import logger

from models.task_model import GenerationTask
from sora_client import GenerationCallbacks, SoraClient


class VideoGenerationThread(QThread):
    """
    视频生成工作线程

    线程只持有任务快照和任务ID，进度与结果通过信号交回主线程处理，
    台账只在主线程中修改。
    """
    progress_updated = pyqtSignal(str, int, object, str)  # task_id, attempt, percent(None 表示无百分比), message
    generation_completed = pyqtSignal(str, int, str)  # task_id, attempt, video_url
    generation_failed = pyqtSignal(str, int, str)  # task_id, attempt, error_message

    def __init__(self, client: SoraClient, task: GenerationTask, attempt: int):
        super().__init__()
        self.client = client
        self.task = replace(task)
        self.task_id = task.id
        self.attempt = attempt

    def run(self):
        callbacks = GenerationCallbacks(
            on_progress=lambda percent, message: self.progress_updated.emit(
                self.task_id, self.attempt, percent, message),
            on_complete=lambda url: self.generation_completed.emit(self.task_id, self.attempt, url),
            on_error=lambda message: self.generation_failed.emit(self.task_id, self.attempt, message),
        )
        try:
            self.client.generate(self.task, callbacks)
        except Exception as e:
            # 线程内的异常不会传回主线程，这里转换成失败信号
            logger.exception(f"生成线程异常 task={self.task_id}: {e}")
            self.generation_failed.emit(self.task_id, self.attempt, str(e))
