"""
生成任务调度

把 SoraClient 的回调落到任务台账上：提交校验、开始/重新生成、进度更新、
完成后计数并截取缩略图、失败记录原因、删除任务、下载已完成的视频。
"""

import os
from typing import Callable, Optional

from PyQt5.QtCore import QObject, pyqtSignal, pyqtSlot
from loguru import logger

from models.task_model import GenerationTask, TaskStatus
from sora_client import GenerationCallbacks, SoraClient
from task_ledger import TaskLedger
from threads.thumbnail_thread import ThumbnailThread, extract_thumbnail
from threads.video_download_thread import VideoDownloadThread, default_video_filename, download_video
from threads.video_generation_thread import VideoGenerationThread
from utils.global_thread_pool import GlobalThreadPool


class GenerationService(QObject):
    """生成任务调度器，所有台账修改都在本对象所在的线程中完成"""
    task_changed = pyqtSignal(str)  # task_id
    download_finished = pyqtSignal(str, bool, str)  # task_id, success, save_path 或错误信息

    def __init__(
        self,
        ledger: TaskLedger,
        client: SoraClient,
        thread_pool: Optional[GlobalThreadPool] = None,
        thumbnails_dir: Optional[str] = None,
        thumbnailer: Optional[Callable[[str, str], str]] = None,
        parent: Optional[QObject] = None,
    ):
        """
        Args:
            ledger: 任务台账
            client: Sora客户端，on_api_call 应指向 ledger.record_api_call
            thread_pool: 工作线程池，start() 需要
            thumbnails_dir: 缩略图目录，为 None 时不生成缩略图
            thumbnailer: 缩略图函数 (video_url, output_path) -> path，默认用 ffmpeg 截取
        """
        super().__init__(parent)
        self.ledger = ledger
        self.client = client
        self.thread_pool = thread_pool
        self.thumbnails_dir = thumbnails_dir
        self.thumbnailer = thumbnailer or extract_thumbnail

    def submit(self, task: GenerationTask) -> GenerationTask:
        """校验并加入台账，校验失败抛 TaskValidationError，不会发出任何请求"""
        stored = self.ledger.submit(task)
        self.task_changed.emit(stored.id)
        return stored

    def delete(self, task_id: str) -> bool:
        """删除任务；正在生成的流继续跑完，之后的回调自动忽略"""
        deleted = self.ledger.delete(task_id)
        if deleted:
            self.task_changed.emit(task_id)
        return deleted

    def _prepare_attempt(self, task_id: str):
        task = self.ledger.get(task_id)
        if task is None:
            raise KeyError(f"任务不存在: {task_id}")
        task.validate()
        attempt = self.ledger.begin_attempt(task_id)
        self.task_changed.emit(task_id)
        return self.ledger.get(task_id), attempt

    def generate_now(self, task_id: str) -> Optional[str]:
        """
        在当前线程中同步执行一次生成（命令行使用）

        Returns:
            视频地址；失败返回 None

        Raises:
            KeyError: 任务不存在
            InvalidTransitionError: 任务正在生成中
        """
        task, attempt = self._prepare_attempt(task_id)
        callbacks = GenerationCallbacks(
            on_progress=lambda percent, message: self.on_progress(task_id, attempt, percent, message),
            on_complete=lambda url: self.on_completed(task_id, attempt, url),
            on_error=lambda message: self.on_failed(task_id, attempt, message),
        )
        return self.client.generate(task, callbacks)

    def start(self, task_id: str) -> int:
        """
        在工作线程中开始生成，立即返回本轮的 attempt 序号

        Raises:
            KeyError: 任务不存在
            InvalidTransitionError: 任务正在生成中
            RuntimeError: 没有配置线程池
        """
        if self.thread_pool is None:
            raise RuntimeError("未配置线程池，无法异步生成")
        task, attempt = self._prepare_attempt(task_id)

        thread = VideoGenerationThread(self.client, task, attempt)
        thread.progress_updated.connect(self.on_progress)
        thread.generation_completed.connect(self.on_completed)
        thread.generation_failed.connect(self.on_failed)
        self.thread_pool.submit(task_id, thread)
        logger.info(f"任务已进入生成队列 #{task.sequence_number} {task_id} attempt={attempt}")
        return attempt

    def regenerate(self, task_id: str) -> int:
        """对已完成或失败的任务重新生成，记录保持不变"""
        return self.start(task_id)

    def _download_target(self, task_id: str, save_path: Optional[str]):
        task = self.ledger.get(task_id)
        if task is None:
            raise KeyError(f"任务不存在: {task_id}")
        if task.status is not TaskStatus.COMPLETED or not task.artifact_url:
            raise ValueError(f"任务 {task_id} 尚未完成，没有可下载的视频")
        if not save_path:
            save_path = default_video_filename(task_id)
        elif os.path.isdir(save_path):
            save_path = os.path.join(save_path, default_video_filename(task_id))
        return task.artifact_url, save_path

    def download_now(self, task_id: str, save_path: Optional[str] = None, on_progress=None) -> str:
        """
        在当前线程中下载已完成任务的视频

        Args:
            task_id: 任务ID
            save_path: 保存路径或目录，默认当前目录下的 sora-video-<ID前8位>.mp4
            on_progress: 进度回调 (已下载字节数, 总字节数)

        Raises:
            KeyError: 任务不存在
            ValueError: 任务未完成
            requests.exceptions.RequestException, OSError: 下载失败
        """
        video_url, save_path = self._download_target(task_id, save_path)
        return download_video(video_url, save_path, on_progress=on_progress)

    def start_download(self, task_id: str, save_path: Optional[str] = None) -> str:
        """在工作线程中下载，结果通过 download_finished 信号返回，立即返回保存路径"""
        if self.thread_pool is None:
            raise RuntimeError("未配置线程池，无法异步下载")
        video_url, save_path = self._download_target(task_id, save_path)
        thread = VideoDownloadThread(task_id, video_url, save_path)
        thread.download_finished.connect(self.download_finished)
        self.thread_pool.submit(f"download:{task_id}", thread)
        return save_path

    @pyqtSlot(str, int, object, str)
    def on_progress(self, task_id: str, attempt: int, percent, message: str):
        if self.ledger.apply_progress(task_id, percent, message, attempt=attempt) is not None:
            self.task_changed.emit(task_id)

    @pyqtSlot(str, int, str)
    def on_completed(self, task_id: str, attempt: int, video_url: str):
        # 视频确实生成了，即使任务已被删除也计入产出
        self.ledger.record_artifact()
        task = self.ledger.mark_completed(task_id, video_url, attempt=attempt)
        if task is None:
            return
        self.task_changed.emit(task_id)
        logger.info(f"任务完成 #{task.sequence_number} {task_id}: {video_url}")
        self._make_thumbnail(task_id, video_url)

    @pyqtSlot(str, int, str)
    def on_failed(self, task_id: str, attempt: int, message: str):
        task = self.ledger.mark_failed(task_id, message, attempt=attempt)
        if task is None:
            return
        logger.error(f"任务失败 #{task.sequence_number} {task_id}: {message}")
        self.task_changed.emit(task_id)

    def _make_thumbnail(self, task_id: str, video_url: str):
        if not self.thumbnails_dir:
            return
        output_path = os.path.join(self.thumbnails_dir, f"{task_id}.jpg")

        if self.thread_pool is None:
            try:
                path = self.thumbnailer(video_url, output_path)
            except Exception as e:
                # 这里处在 on_complete 回调里，异常不能传回 SoraClient
                self.on_thumbnail_failed(task_id, str(e))
                return
            self.on_thumbnail_ready(task_id, path)
            return

        thread = ThumbnailThread(task_id, video_url, output_path, thumbnailer=self.thumbnailer)
        thread.thumbnail_ready.connect(self.on_thumbnail_ready)
        thread.thumbnail_failed.connect(self.on_thumbnail_failed)
        self.thread_pool.submit(f"thumbnail:{task_id}", thread)

    @pyqtSlot(str, str)
    def on_thumbnail_ready(self, task_id: str, path: str):
        if self.ledger.set_thumbnail(task_id, path) is not None:
            self.task_changed.emit(task_id)

    @pyqtSlot(str, str)
    def on_thumbnail_failed(self, task_id: str, error: str):
        # 缩略图失败不影响任务完成状态
        logger.warning(f"缩略图生成失败 task={task_id}: {error}")
