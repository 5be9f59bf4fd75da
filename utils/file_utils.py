"""
文件工具类
"""

import base64
import math
from pathlib import Path

_CONTENT_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.bmp': 'image/bmp',
    '.mp4': 'video/mp4',
    '.mov': 'video/quicktime',
    '.webm': 'video/webm',
}


def guess_content_type(path: str) -> str:
    return _CONTENT_TYPES.get(Path(path).suffix.lower(), 'application/octet-stream')


def file_to_data_url(file_path: str) -> str:
    """
    把本地图片/视频转换为 data URL，作为请求中的 image_url / video_url

    Args:
        file_path: 本地文件路径

    Returns:
        str: data:<mime>;base64,<内容>

    Raises:
        FileNotFoundError: 文件不存在
    """
    p = Path(file_path).expanduser()
    if not p.exists() or not p.is_file():
        raise FileNotFoundError(f"文件不存在: {file_path}")
    encoded = base64.b64encode(p.read_bytes()).decode('ascii')
    return f"data:{guess_content_type(str(p))};base64,{encoded}"


def format_file_size(size_bytes: int) -> str:
    """
    格式化文件大小

    Args:
        size_bytes: 文件大小（字节）

    Returns:
        str: 格式化后的文件大小
    """
    if size_bytes <= 0:
        return "0 B"
    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(size_names) - 1)
    p = math.pow(1024, i)
    s = round(size_bytes / p, 2)
    return f"{s} {size_names[i]}"
