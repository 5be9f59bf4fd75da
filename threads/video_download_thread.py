"""
视频下载线程
"""

import os
from typing import Callable, Optional

import requests
from PyQt5.QtCore import QThread, pyqtSignal
from loguru import logger

from constants import DOWNLOAD_CHUNK_SIZE, DOWNLOAD_TIMEOUT

ProgressCallback = Callable[[int, int], None]


def default_video_filename(task_id: str) -> str:
    """下载文件的默认名称：sora-video-<任务ID前8位>.mp4"""
    return f"sora-video-{task_id[:8]}.mp4"


def download_video(video_url: str, save_path: str, timeout: int = DOWNLOAD_TIMEOUT,
                   on_progress: Optional[ProgressCallback] = None) -> str:
    """
    流式下载视频到本地

    先写入 <save_path>.part，下载完整后再改名，中途失败不会留下半截文件。

    Args:
        video_url: 视频地址
        save_path: 保存路径
        timeout: 超时（秒）
        on_progress: 进度回调 (已下载字节数, 总字节数，未知时为0)

    Returns:
        str: 保存路径

    Raises:
        requests.exceptions.RequestException: 请求或读取失败
        OSError: 写文件失败
    """
    logger.info(f"开始下载视频: {video_url}")
    # 普通下载，不带网关的认证头
    response = requests.get(video_url, stream=True, timeout=timeout)
    part_path = f"{save_path}.part"
    try:
        response.raise_for_status()
        total_size = int(response.headers.get('content-length') or 0)
        logger.info(f"文件总大小: {total_size} bytes")

        os.makedirs(os.path.dirname(save_path) or ".", exist_ok=True)
        downloaded_size = 0
        with open(part_path, 'wb') as f:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if not chunk:
                    continue
                f.write(chunk)
                downloaded_size += len(chunk)
                if on_progress is not None:
                    on_progress(downloaded_size, total_size)
        os.replace(part_path, save_path)
    except BaseException:
        if os.path.exists(part_path):
            os.remove(part_path)
        raise
    finally:
        response.close()

    logger.info(f"视频下载完成: {save_path} ({downloaded_size} bytes)")
    return save_path


class VideoDownloadThread(QThread):
    """视频下载线程"""
    progress = pyqtSignal(str, int, int)  # task_id, downloaded, total
    download_finished = pyqtSignal(str, bool, str)  # task_id, success, save_path 或错误信息

    def __init__(self, task_id: str, video_url: str, save_path: str, downloader=download_video):
        super().__init__()
        self.task_id = task_id
        self.video_url = video_url
        self.save_path = save_path
        self.downloader = downloader

    def run(self):
        try:
            path = self.downloader(
                self.video_url,
                self.save_path,
                on_progress=lambda done, total: self.progress.emit(self.task_id, done, total),
            )
        except Exception as e:
            logger.error(f"下载失败: URL={self.video_url}, 错误={e}")
            self.download_finished.emit(self.task_id, False, f"下载出错: {e}")
            return
        self.download_finished.emit(self.task_id, True, path)
