"""
日志工具类
"""

import datetime
import os
import sys

from loguru import logger

CONSOLE_FORMAT = ("<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
                  "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(log_dir: str, console_level: str = "INFO") -> str:
    """
    配置日志系统：彩色控制台输出 + 按大小轮转的文件输出

    Args:
        log_dir: 日志目录
        console_level: 控制台日志级别

    Returns:
        str: 当前日志文件路径
    """
    os.makedirs(log_dir, exist_ok=True)
    current_time = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file_path = os.path.join(log_dir, f"sora2_{current_time}.log")

    # 移除默认的日志处理器
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=console_level)
    logger.add(
        log_file_path,
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="50 MB",  # 文件大小超过50MB时轮转
        retention="7 days",  # 保留7天的日志
        compression="zip",  # 压缩旧日志文件
        encoding="utf-8",
    )
    logger.info(f"日志系统初始化完成，日志文件: {log_file_path}")
    return log_file_path

