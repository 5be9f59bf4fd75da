"""
子线程：从生成好的视频中截取缩略图
依赖系统已安装 ffmpeg。
"""

import os
import subprocess

from PyQt5.QtCore import QThread, pyqtSignal
from loguru import logger

from constants import THUMBNAIL_SEEK_SECONDS, THUMBNAIL_TIMEOUT


def extract_thumbnail(video_url: str, output_path: str, timeout: int = THUMBNAIL_TIMEOUT) -> str:
    """
    用 ffmpeg 截取视频第 0.1 秒的画面

    Args:
        video_url: 视频地址（本地路径或 http 地址）
        output_path: 输出的 jpg 路径
        timeout: ffmpeg 超时（秒）

    Returns:
        str: 缩略图路径

    Raises:
        RuntimeError: ffmpeg 不存在、超时或执行失败
    """
    try:
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    except OSError as e:
        raise RuntimeError(f"无法创建缩略图目录: {e}") from e

    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel", "error",
        "-y",
        "-ss", str(THUMBNAIL_SEEK_SECONDS),
        "-i", video_url,
        "-frames:v", "1",
        "-q:v", "4",
        output_path,
    ]
    logger.debug(f"执行ffmpeg命令: {' '.join(cmd)}")
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise RuntimeError("未找到 ffmpeg，无法生成缩略图") from e
    except subprocess.TimeoutExpired as e:
        raise RuntimeError("缩略图生成超时") from e
    except (OSError, ValueError) as e:
        raise RuntimeError(f"ffmpeg 启动失败: {e}") from e

    if proc.returncode != 0 or not os.path.isfile(output_path):
        err = (proc.stderr or "ffmpeg执行失败").strip()
        raise RuntimeError(f"缩略图生成失败 code={proc.returncode}: {err}")
    return output_path


class ThumbnailThread(QThread):
    """缩略图截取线程"""
    thumbnail_ready = pyqtSignal(str, str)  # task_id, thumbnail_path
    thumbnail_failed = pyqtSignal(str, str)  # task_id, error

    def __init__(self, task_id: str, video_url: str, output_path: str, thumbnailer=extract_thumbnail):
        super().__init__()
        self.task_id = task_id
        self.video_url = video_url
        self.output_path = output_path
        self.thumbnailer = thumbnailer

    def run(self):
        try:
            path = self.thumbnailer(self.video_url, self.output_path)
        except Exception as e:
            # 线程内异常不能逃出 run
            self.thumbnail_failed.emit(self.task_id, str(e))
            return
        self.thumbnail_ready.emit(self.task_id, path)
